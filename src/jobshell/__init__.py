"""jobshell - embeddable job-control shell interpreter.

A POSIX-shell-like interpreter whose processes are cooperative asyncio
tasks rather than operating system processes.

Features:
- Pipelines connected by bounded FIFO devices
- Background jobs, process groups, suspend/resume and kill
- Command substitution as sub-processes
- Variables resolved through a per-process scope chain
- Builtins and ad hoc Python generators
- Persisted history and variables
"""

__version__ = "1.0.0"
__author__ = "jobshell developers"
__license__ = "MIT"

from jobshell.cli import main

__all__ = ["main", "__version__"]
