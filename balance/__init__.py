"""Balance - bank statement upload sessions with magic-link sign-in"""

from __future__ import annotations

__version__ = "0.1.0"
