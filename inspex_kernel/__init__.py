"""
Inspex Kernel - door certification workflow core

A transactional workflow engine that carries a pressure-rated door through:
- Checklist inspection sessions (one active session per door)
- Engineer review, certification and rejection
- Certificate document generation with saga-style compensation
- Administrative release and client download / acceptance / rejection
- Best-effort notifications and a hash-chained workflow audit log
"""

__version__ = "0.1.0"
