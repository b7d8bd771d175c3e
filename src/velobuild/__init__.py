"""velobuild: offline collector build engine for Velociraptor artifacts.

Resolves the external tools each artifact needs, fetches and verifies them,
and assembles deployable collector packages with an auditable mapping.
"""

__version__ = "0.4.0"
