"""wasmbuild - profile-driven build orchestrator for WebAssembly component templates."""

__version__ = "0.1.0"
