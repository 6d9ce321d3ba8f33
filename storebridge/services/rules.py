"""Per-entity transform rules from the Firestore layout to the MongoDB layout."""

from typing import Any, Dict

from .transformer import RecordScope, count_words, to_list, to_number


def transform_user(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """userProfiles -> users."""
    email = scope.require("email")
    created_at, updated_at = scope.timestamps()

    return {
        "uid": data.get("uId") or scope.source_id,
        "email": email,
        "name": data.get("name"),
        "username": data.get("username"),
        "githubUsername": data.get("githubUsername"),
        "role": scope.enum("role", data.get("role")),
        "expertiseAreas": to_list(data.get("expertiseAreas")),
        "statistics": {
            "totalCredits": to_number(data.get("totalCredits")),
            "approvedTranslations": to_number(data.get("approvedTranslations")),
            "rejectedTranslations": to_number(data.get("rejectedTranslations")),
            "totalWordsTranslated": to_number(data.get("totalWordsTranslated")),
            "contributionCount": to_number(data.get("contributionCount")),
            "certificatesEarned": to_number(data.get("certificatesEarned")),
        },
        "certificates": scope.ref("certificates", data.get("certificates")),
        "currentFiles": scope.ref("currentFiles", data.get("currentFiles")),
        "contributedFiles": scope.ref("contributedFiles", data.get("contributedFiles")),
        "createdAt": created_at,
        "updatedAt": updated_at,
        "lastActive": scope.timestamp(data.get("lastActive")),
    }


def transform_project(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """projects -> projects."""
    title = scope.require("title")
    created_at, updated_at = scope.timestamps()

    return {
        "userId": scope.ref("userId", data.get("uId")),
        "title": title,
        "version": data.get("version"),
        "description": data.get("description"),
        "developedBy": data.get("developedBy"),
        "difficulty": to_number(data.get("difficulty"), default=None),
        "source": data.get("source"),
        "categories": to_list(data.get("categories")),
        "status": scope.enum("status", data.get("status")),
        "files": scope.ref("files", data.get("files")),
        "estimatedHours": to_number(data.get("estimatedHours")),
        "translationProgress": to_number(data.get("translationProgress")),
        "availableForTranslation": data.get("availableForTranslation") is not False,
        "lastSyncedAt": scope.timestamp(data.get("lastSyncedAt")),
        "lastSyncSha": data.get("lastSyncSha"),
        "createdAt": created_at,
        "updatedAt": updated_at,
    }


def _translation(item: Dict[str, Any], scope: RecordScope, default_created) -> Dict[str, Any]:
    return {
        "text": item.get("text"),
        "comment": item.get("comment"),
        "isHumanTranslated": item.get("isHumanTranslated") is not False,
        "username": item.get("username"),
        "userId": scope.ref("translations.userId", item.get("userId")),
        "createdAt": scope.timestamp(item.get("createdAt")) or default_created,
        "status": scope.enum("translations.status", item.get("status")),
        "reviewComments": to_list(item.get("reviewComments")),
    }


def transform_document(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """files -> documents."""
    file_name = scope.require("fileName")
    created_at, updated_at = scope.timestamps()

    translations = []
    for item in to_list(data.get("translations")):
        if not isinstance(item, dict):
            scope.warn(f"Dropped malformed translation entry {item!r}")
            continue
        translations.append(_translation(item, scope, created_at))

    word_count = to_number(data.get("wordCount"), default=None)
    if word_count is None:
        word_count = count_words(data.get("originalText"))

    return {
        "projectId": scope.ref("projectId", data.get("projectId")),
        "userId": scope.ref("userId", data.get("uId")),
        "fileName": file_name,
        "filePath": data.get("filePath"),
        "folderPath": data.get("folderPath"),
        "originalText": data.get("originalText"),
        "translatedText": data.get("translatedText"),
        "status": scope.enum("status", data.get("status")),
        "assignedTranslatorId": scope.ref("assignedTranslatorId", data.get("assignedTranslatorId")),
        "reviewerId": scope.ref("reviewerId", data.get("reviewerId")),
        "translations": translations,
        "metadata": {
            "wordCount": word_count,
            "estimatedHours": to_number(data.get("estimatedHours")),
            "actualHours": to_number(data.get("actualHours")),
            "fileSize": to_number(data.get("fileSize"), default=None),
            "storageType": scope.enum("metadata.storageType", data.get("storageType")),
            "contentUrl": data.get("contentUrl"),
            "githubSha": data.get("githubSha"),
            "lastSyncedAt": scope.timestamp(data.get("lastSyncedAt")),
        },
        "visibility": scope.enum("visibility", data.get("visibility")),
        "seo": {
            "title": data.get("seoTitle"),
            "description": data.get("seoDescription"),
            "keywords": to_list(data.get("seoKeywords")),
        },
        "createdAt": created_at,
        "updatedAt": updated_at,
        "publishedAt": scope.timestamp(data.get("publishedAt")),
    }


def transform_certificate(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """certificates -> certificates."""
    code = scope.require("verificationCode")
    created_at, _ = scope.timestamps()

    return {
        "userId": scope.ref("userId", data.get("userId")),
        "username": data.get("username"),
        "fullName": data.get("fullName"),
        "projectId": scope.ref("projectId", data.get("projectId")),
        "projectName": data.get("projectName"),
        "fileId": scope.ref("fileId", data.get("fileId")),
        "githubRepo": data.get("githubRepo"),
        "prUrl": data.get("prUrl"),
        "mergedAt": scope.timestamp(data.get("mergedAt")),
        "type": scope.enum("type", data.get("type")),
        "certificateType": scope.enum("certificateType", data.get("certificateType")),
        "category": data.get("category"),
        "verificationCode": code,
        "pdfPath": f"/certificates/{code}.pdf",
        "metadata": {
            "wordsTranslated": to_number(data.get("wordsTranslated")),
            "filesCompleted": to_number(data.get("filesCompleted")),
            "reviewsPassed": to_number(data.get("reviewsPassed")),
        },
        "createdAt": created_at,
    }


def transform_review(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """reviews -> reviews."""
    file_id = scope.require("fileId")
    created_at, updated_at = scope.timestamps()

    return {
        "fileId": scope.ref("fileId", file_id),
        # embedded translation id, carried over as an opaque legacy value
        "translationId": data.get("translationId"),
        "reviewerId": scope.ref("reviewerId", data.get("reviewerId")),
        "userId": scope.ref("userId", data.get("uId")),
        "status": scope.enum("status", data.get("status")),
        "priority": scope.enum("priority", data.get("priority")),
        "scores": {
            "securityAccuracy": to_number(data.get("securityAccuracyScore"), default=None),
            "languageQuality": to_number(data.get("languageQualityScore"), default=None),
        },
        "comments": data.get("comments"),
        "reviewType": scope.enum("reviewType", data.get("reviewType")),
        "category": data.get("category"),
        "dueDate": scope.timestamp(data.get("dueDate")),
        "estimatedReviewTime": to_number(data.get("estimatedReviewTime"), default=None),
        "createdAt": created_at,
        "updatedAt": updated_at,
    }


def transform_memory_entry(data: Dict[str, Any], scope: RecordScope) -> Dict[str, Any]:
    """translationMemory -> translation_memory."""
    original = scope.require("originalText")
    created_at, _ = scope.timestamps()

    return {
        "userId": scope.ref("userId", data.get("uId") or data.get("createdBy")),
        "originalText": original,
        "translatedText": data.get("translatedText"),
        "context": data.get("context"),
        "category": data.get("category"),
        "confidence": to_number(data.get("confidence"), default=0.8),
        "usageCount": to_number(data.get("usageCount")),
        "projectId": scope.ref("projectId", data.get("projectId")),
        "fileId": scope.ref("fileId", data.get("fileId")),
        "createdAt": created_at,
        "lastUsed": scope.timestamp(data.get("lastUsed")),
    }


ENTITY_RULES = {
    "users": transform_user,
    "projects": transform_project,
    "documents": transform_document,
    "certificates": transform_certificate,
    "reviews": transform_review,
    "translation_memory": transform_memory_entry,
}
