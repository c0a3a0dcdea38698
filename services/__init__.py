# Services Module for Collabflow
# Proposal lifecycle, milestone and payment orchestration services.
# Import from the submodules directly: core/ depends on services.errors,
# so this package must stay free of eager imports.
