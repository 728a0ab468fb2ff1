"""Site Spine - campaign deployment pipeline for generated static pages."""

__version__ = "0.1.0"
