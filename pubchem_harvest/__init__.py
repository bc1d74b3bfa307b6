"""
pubchem-harvest - PubChem compound downloader and section-tree extractor.

Apps:
- apps.downloader: resilient, proxy-rotating fetch of compound records to disk
- apps.transformer: section-tree extraction into flattened records
- apps.saver: batched persistence and export of extracted records
"""

__version__ = "0.1.0"
