# =============================================================================
# ragcore/cli/__init__.py: CLI Module Overview
# =============================================================================
#
# Operator-facing command-line access to the same service graph the API
# uses (built by ragcore.main.build_services):
#
#   add     register a local file as a document (status "uploaded")
#   process run the processing pipeline for a document (--force to redo)
#   status  show processing progress and the last error
#   search  similarity search with optional type/collection filters
#   stats   document counts per status and chunk counts per type
#
# Results are printed to stdout as JSON; logs go to stderr.  Any
# RagCoreError is printed as a JSON error object and exits with code 1.
# =============================================================================

"""Command-line interface for ragcore: ``python -m ragcore.cli``."""
