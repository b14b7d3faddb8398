"""Helpers for web backends built on FastAPI / Starlette.

This package intentionally keeps route handlers thin:
- multipart uploads with sniffed-type checks and random renaming (uploads)
- strict JSON / XML body decoding with readable errors (codec)
- JSON / XML responses, error envelopes and downloads (responses)
- random identifiers and safe path handling (security)
- slugs (text) and outbound JSON pushes (remote)

Security note:
Renamed uploads get 25 random characters from a 64-symbol alphabet, so stored
names are unguessable. Uploads kept under their original names are reduced to
a base name first, but may still overwrite each other.
"""
