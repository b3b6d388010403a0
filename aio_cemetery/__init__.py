"""
Async loader for cemetery grave and plot datasets.

Graves and burial plots are published as GeoJSON by a web GIS API. This library fetches both
datasets, normalizes and reprojects their geometries, classifies each feature as an expired
grave or an occupied plot, and computes the extent a map view can be framed with.

```python
from aio_cemetery import Pipeline

pipeline = Pipeline()
run = await pipeline.run()

for grave in run.result.graves:
    print(grave.classification, grave.expires_on)

if not run.result.extent.is_empty:
    print(run.result.extent.bounds)

await pipeline.close()
```
"""

import importlib.metadata


__version__: str = importlib.metadata.version("aio-cemetery")

# we add this to all modules for pdoc;
# see https://pdoc.dev/docs/pdoc.html#use-numpydoc-or-google-docstrings
__docformat__ = "google"

# we also use __all__ in all modules for pdoc; this lets us control the order
__all__ = (
    "__version__",
    "CemeteryError",
    "Classification",
    "Client",
    "DatasetCache",
    "Extent",
    "Pipeline",
    "PipelineConfig",
    "cache",
    "client",
    "dataset",
    "error",
    "extent",
    "feature",
    "geometry",
    "pipeline",
    "projection",
    "spatial",
)

from .cache import DatasetCache
from .client import Client
from .error import CemeteryError
from .extent import Extent
from .feature import Classification
from .pipeline import Pipeline, PipelineConfig
