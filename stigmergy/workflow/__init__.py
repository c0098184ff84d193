"""
Coordination engine: status derivation, scheduling, claims, hygiene
and story links over parsed task documents.
"""

from stigmergy.workflow.derive import DerivedEpoch, derive_all, derive_status
from stigmergy.workflow.claims import ClaimManager
