"""The Firestore to MongoDB entity catalog.

Entity types, their relations, closed enum tables and the versioned index
list applied after load. Relations marked ``deferrable`` may be resolved by
the back-reference pass when they close a cycle.
"""

from .models.reference import RelationKind
from .models.schema import Catalog, EntityDefinition, EnumTable, IndexSpec, Relation

INDEX_VERSION = 1

ENUM_TABLES = [
    EnumTable.identity(
        "user_role",
        ["contributor", "bot", "moderator", "administrator"],
        default="contributor",
    ),
    EnumTable.identity(
        "project_status",
        ["not started", "in progress", "completed"],
        default="not started",
        aliases={"not_started": "not started", "in_progress": "in progress"},
    ),
    EnumTable.identity(
        "document_status",
        ["not taken", "in progress", "pending", "rejected", "accepted"],
        default="not taken",
        aliases={"not_taken": "not taken", "in_progress": "in progress"},
    ),
    EnumTable.identity(
        "translation_status",
        ["draft", "submitted", "approved", "rejected"],
        default="draft",
    ),
    EnumTable.identity(
        "visibility",
        ["public", "private", "unlisted"],
        default="public",
    ),
    EnumTable(
        name="storage_type",
        values={
            "firestore": "database",
            "firebase_storage": "minio",
            "github_raw": "filesystem",
        },
        default="database",
    ),
    EnumTable.identity(
        "review_status",
        ["pending", "in-progress", "approved", "rejected"],
        default="pending",
        aliases={"in_progress": "in-progress", "in progress": "in-progress"},
    ),
    EnumTable.identity(
        "review_priority",
        ["low", "medium", "high"],
        default="medium",
    ),
    EnumTable.identity(
        "review_type",
        ["translation", "content", "security"],
        default="translation",
    ),
    EnumTable.identity(
        "certificate_tier",
        ["bronze", "silver", "gold", "platinum", "diamond", "sigma", "alpha"],
        default="bronze",
    ),
    EnumTable.identity(
        "certificate_type",
        ["translation", "review", "contribution"],
        default="translation",
    ),
]

ENTITIES = [
    EntityDefinition(
        name="users",
        source_collection="userProfiles",
        target_collection="users",
        description="Contributor accounts",
        relations=[
            Relation("certificates", "certificates", RelationKind.MANY, deferrable=True),
            Relation("currentFiles", "documents", RelationKind.KEYED, deferrable=True),
            Relation("contributedFiles", "documents", RelationKind.KEYED, deferrable=True),
        ],
        enums={"role": "user_role"},
        required_fields=["email"],
    ),
    EntityDefinition(
        name="projects",
        source_collection="projects",
        target_collection="projects",
        description="Translation projects grouping documents",
        relations=[
            Relation("userId", "users"),
            Relation("files", "documents", RelationKind.MANY, deferrable=True, inverse="projectId"),
        ],
        enums={"status": "project_status"},
        required_fields=["title"],
    ),
    EntityDefinition(
        name="documents",
        source_collection="files",
        target_collection="documents",
        description="Files under translation, with embedded translations",
        relations=[
            Relation("projectId", "projects"),
            Relation("userId", "users"),
            Relation("assignedTranslatorId", "users"),
            Relation("reviewerId", "users"),
            Relation("translations.userId", "users"),
        ],
        enums={
            "status": "document_status",
            "visibility": "visibility",
            "metadata.storageType": "storage_type",
            "translations.status": "translation_status",
        },
        required_fields=["fileName"],
    ),
    EntityDefinition(
        name="certificates",
        source_collection="certificates",
        target_collection="certificates",
        description="Contribution certificates",
        relations=[
            Relation("userId", "users"),
            Relation("projectId", "projects"),
            Relation("fileId", "documents"),
        ],
        enums={"type": "certificate_tier", "certificateType": "certificate_type"},
        required_fields=["verificationCode"],
    ),
    EntityDefinition(
        name="reviews",
        source_collection="reviews",
        target_collection="reviews",
        description="Translation reviews",
        relations=[
            Relation("fileId", "documents"),
            Relation("reviewerId", "users"),
            Relation("userId", "users"),
        ],
        enums={
            "status": "review_status",
            "priority": "review_priority",
            "reviewType": "review_type",
        },
        required_fields=["fileId"],
    ),
    EntityDefinition(
        name="translation_memory",
        source_collection="translationMemory",
        target_collection="translation_memory",
        description="Reusable translated segments",
        relations=[
            Relation("userId", "users"),
            Relation("projectId", "projects"),
            Relation("fileId", "documents"),
        ],
        required_fields=["originalText"],
    ),
]

INDEXES = [
    IndexSpec("users", (("email", 1),)),
    IndexSpec("users", (("username", 1),)),
    IndexSpec("users", (("githubUsername", 1),)),
    IndexSpec("users", (("role", 1), ("lastActive", -1))),
    IndexSpec("projects", (("userId", 1),)),
    IndexSpec("projects", (("status", 1), ("availableForTranslation", 1))),
    IndexSpec("projects", (("categories", 1),)),
    IndexSpec("projects", (("source", 1),)),
    IndexSpec("documents", (("projectId", 1), ("status", 1))),
    IndexSpec("documents", (("assignedTranslatorId", 1), ("status", 1))),
    IndexSpec("documents", (("metadata.wordCount", -1),)),
    IndexSpec("documents", (("visibility", 1), ("publishedAt", -1))),
    IndexSpec("reviews", (("fileId", 1), ("status", 1))),
    IndexSpec("reviews", (("reviewerId", 1), ("status", 1))),
    IndexSpec("reviews", (("dueDate", 1), ("priority", -1))),
    IndexSpec("certificates", (("userId", 1), ("type", -1))),
    IndexSpec("certificates", (("verificationCode", 1),)),
    IndexSpec("certificates", (("projectId", 1),)),
    IndexSpec("translation_memory", (("userId", 1), ("category", 1))),
    IndexSpec("translation_memory", (("originalText", "text"), ("translatedText", "text"))),
    IndexSpec("translation_memory", (("confidence", -1), ("usageCount", -1))),
]


def build_catalog() -> Catalog:
    """Build the default catalog."""
    return Catalog(
        name="armenian-docs",
        entities={entity.name: entity for entity in ENTITIES},
        enum_tables={table.name: table for table in ENUM_TABLES},
        indexes=list(INDEXES),
        index_version=INDEX_VERSION,
    )


DEFAULT_CATALOG = build_catalog()
