"""ProposalHub backend: multi-tenant proposal collaboration API."""

__version__ = "0.4.0"
