"""HomeWizard Exporter package.

A single-shot job that polls a HomeWizard energy meter, maps its raw fields
to measurements using a mounted mapping document, and publishes them to a
message bus subject.
"""

__version__ = "0.1.0"
