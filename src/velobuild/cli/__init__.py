"""velobuild command line interface."""
