"""
native_bridge — Cross-runtime native build orchestrator.

Drives cargo to build the solver library, relocates the outputs into the
layout dune expects for the OCaml stubs, and dispatches the native and
downstream test suites in order.
"""

__version__ = "0.3.0"
PACKAGE_NAME = "native_bridge"
SCHEMA_VERSION = "0.2"
