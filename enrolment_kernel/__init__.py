"""
Enrolment Kernel

Learner/course entities and the derived enrolment state the batch engine
recomputes:
- Pluggable access providers with bounded per-provider state logs
- Versioned enrolment results (site salt + provider versions)
- Structured logging, typed exceptions, injectable clock
"""

__version__ = "0.1.0"
