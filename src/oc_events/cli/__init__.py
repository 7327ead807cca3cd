"""oc-events command line interface."""
