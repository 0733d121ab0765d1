"""vts-bootstrap: first-boot host provisioning (state-driven, resumable).

Core design goals:
- One CLI, one module per concern (users, packages, GPU, RMM, ...)
- Idempotent modules; completed ones are skipped on resume
- Distribution dispatch across apt, dnf, yum and nix
- Every command and decision logged
"""

__version__ = "2.0.0"

__all__ = ["__version__"]
