"""Model bridge service package.

Layout:
- ``api``: method channel and REST endpoints hosting it.
- ``runtime``: inference invoker, error taxonomy and service-scoped helpers.
- ``adapters``: input conversion, engine boundary and output extraction.
- ``loaders``: model artifact resolution from the asset bundle.

Import convenience:
- from app.runtime.invoker import InferenceInvoker
"""
