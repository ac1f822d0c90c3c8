"""Module __init__: the sweep execution engine."""
#
# MODULES IN THIS PACKAGE:
# - **models.py**: CollectionTask / Stage descriptors and run results
# - **catalog.py**: The default ordered stage list (collection command text)
# - **runner.py**: Subprocess capture with timeouts, staged execution
# - **exit_contract.py**: Risk score -> process exit code
# - **orchestrator.py**: One complete sweep, end to end
#
