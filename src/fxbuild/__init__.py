"""fxbuild - build and watch tooling for FiveM TypeScript resources."""

__version__ = "0.1.0"
