"""
storebridge

Cross-store entity migration engine: moves the Firestore collections of the
translation platform into MongoDB, re-keying every document id to an ObjectId
and repairing every cross-entity reference.

Supports:
- Dependency-ordered stages with deferred back-references for cycles
- Firestore readers (Admin SDK, REST API/emulator, JSON exports)
- MongoDB and in-memory writers
- Resumable runs through an atomically written manifest
- Define-if-absent index creation
"""

__version__ = "1.0.0"
