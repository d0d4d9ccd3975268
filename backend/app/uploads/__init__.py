"""Image upload and retention module for Image Drop.

This module turns a data-URI into a stored image:
decode -> validate -> transcode -> name -> write -> record.

Images are stored flat in the upload directory as ``<16 hex>.<ext>``
and their upload dates are tracked in a single JSON document.
A background sweeper deletes images older than the retention window.
"""
