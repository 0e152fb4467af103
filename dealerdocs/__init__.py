"""
DealerDocs — file management and secure sharing for the dealership dashboard.

Packages:
    dealerdocs.engine  configuration, errors, logging, File Service client,
                       notifier seam, timers
    dealerdocs.files   catalog, uploads, versions, share grants, previews,
                       public share access
"""

__version__ = "1.0.0"
__all__ = ["engine", "files"]
