"""
Site-Spine - idempotent site provisioning for compose stacks.

Subpackages:
- sitespine.core: error types and structured logging
- sitespine.provision: readiness, probing, creation, reconciliation, verification
- sitespine.cli: the ``sitespine`` command
"""

__version__ = "0.1.0"
