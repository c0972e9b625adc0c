from app.models.database import UserRole
from helpers import auth_headers, create_animal


def add_image(client, animal_id, name, **extra):
    return client.post(
        f"/api/v1/animals/{animal_id}/images",
        json={
            "image_url": f"https://animal-images.s3.us-east-1.amazonaws.com/{name}",
            "blob_name": name,
            "file_name": name,
            **extra,
        },
        headers=auth_headers(),
    )


def add_document(client, animal_id, blob_name="0d9c2b1e-vaccines.pdf"):
    return client.post(
        f"/api/v1/animals/{animal_id}/documents",
        json={
            "document_type": "Vaccination Record",
            "file_name": "vaccines.pdf",
            "blob_name": blob_name,
            "blob_url": f"https://animal-documents.s3.us-east-1.amazonaws.com/{blob_name}",
        },
        headers=auth_headers(),
    )


# =============================================================================
# Image Upload URLs
# =============================================================================

def test_image_upload_url(api, staff, storage):
    response = api.client.get(
        "/api/v1/image-upload-url",
        params={"filename": "My Dog (1).jpg", "contentType": "image/jpeg"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["blobName"].endswith("-My-Dog-1-.jpg")
    assert body["sasUrl"].startswith(f"https://s3.example.com/animal-images/{body['blobName']}")
    assert body["imageUrl"] == f"https://animal-images.s3.us-east-1.amazonaws.com/{body['blobName']}"
    assert body["expiresAt"]

    kwargs = storage.client.generate_presigned_url.call_args.kwargs
    assert kwargs["ClientMethod"] == "put_object"
    assert kwargs["ExpiresIn"] == 15 * 60
    assert kwargs["Params"]["ContentType"] == "image/jpeg"


def test_image_upload_url_rejects_non_images(api, staff, storage):
    response = api.client.get(
        "/api/v1/image-upload-url",
        params={"filename": "notes.pdf", "contentType": "application/pdf"},
        headers=auth_headers(),
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid content type. Only images are allowed."
    storage.client.generate_presigned_url.assert_not_called()


def test_image_upload_url_requires_staff(api, storage):
    response = api.client.get(
        "/api/v1/image-upload-url",
        params={"filename": "a.jpg", "contentType": "image/jpeg"},
    )
    assert response.status_code == 401


# =============================================================================
# Image Metadata
# =============================================================================

def test_first_image_becomes_primary(api, staff):
    animal = create_animal(api.client)

    first = add_image(api.client, animal["id"], "one.jpg")
    second = add_image(api.client, animal["id"], "two.jpg")

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["is_primary"] is True
    assert second.json()["is_primary"] is False

    body = api.client.get(f"/api/v1/animals/{animal['id']}").json()
    assert [image["blob_name"] for image in body["images"]] == ["one.jpg", "two.jpg"]
    assert body["primary_image_url"].endswith("/one.jpg")


def test_explicit_primary_leaves_one_primary(api, staff):
    animal = create_animal(api.client)
    add_image(api.client, animal["id"], "one.jpg")
    add_image(api.client, animal["id"], "two.jpg")

    third = add_image(api.client, animal["id"], "three.jpg", is_primary=True)

    assert third.json()["is_primary"] is True
    images = api.client.get(f"/api/v1/animals/{animal['id']}").json()["images"]
    assert [image["blob_name"] for image in images if image["is_primary"]] == ["three.jpg"]


def test_image_for_missing_animal_is_404(api, staff):
    assert add_image(api.client, 999, "ghost.jpg").status_code == 404


def test_delete_primary_image_promotes_next(api, staff, storage):
    animal = create_animal(api.client)
    first = add_image(api.client, animal["id"], "one.jpg").json()
    add_image(api.client, animal["id"], "two.jpg")

    response = api.client.delete(f"/api/v1/images/{first['id']}", headers=auth_headers())

    assert response.status_code == 204
    images = api.client.get(f"/api/v1/animals/{animal['id']}").json()["images"]
    assert [(image["blob_name"], image["is_primary"]) for image in images] == [("two.jpg", True)]
    storage.client.delete_object.assert_called_once_with(Bucket="animal-images", Key="one.jpg")


def test_delete_missing_image_is_404(api, staff, storage):
    response = api.client.delete("/api/v1/images/555", headers=auth_headers())
    assert response.status_code == 404
    storage.client.delete_object.assert_not_called()


# =============================================================================
# Documents
# =============================================================================

def test_document_upload_url(api, staff, storage):
    animal = create_animal(api.client)

    response = api.client.get(
        f"/api/v1/animals/{animal['id']}/document-upload-url",
        params={"file_name": "vet record.pdf", "contentType": "application/pdf"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert "/" not in body["blob_name"]
    assert body["blob_name"].endswith("-vet-record.pdf")
    assert body["blob_url"].endswith(body["blob_name"])
    assert "animal-documents" in body["sasUrl"]


def test_document_upload_url_for_missing_animal(api, staff, storage):
    response = api.client.get(
        "/api/v1/animals/12/document-upload-url",
        params={"file_name": "a.pdf", "contentType": "application/pdf"},
        headers=auth_headers(),
    )
    assert response.status_code == 404


def test_document_upload_url_rejects_unsupported_type(api, staff, storage):
    animal = create_animal(api.client)
    response = api.client.get(
        f"/api/v1/animals/{animal['id']}/document-upload-url",
        params={"file_name": "run.exe", "contentType": "application/x-msdownload"},
        headers=auth_headers(),
    )
    assert response.status_code == 400


def test_document_lifecycle(api, staff, storage):
    animal = create_animal(api.client)

    created = add_document(api.client, animal["id"])
    assert created.status_code == 201
    document = created.json()
    assert document["uploader_email"] == staff.email

    listed = api.client.get(f"/api/v1/animals/{animal['id']}/documents", headers=auth_headers()).json()
    assert [d["id"] for d in listed] == [document["id"]]
    assert listed[0]["uploader_first_name"] == staff.first_name

    download = api.client.get(f"/api/v1/documents/{document['id']}/download-url", headers=auth_headers())
    assert download.status_code == 200
    assert download.json()["downloadUrl"].startswith("https://s3.example.com/animal-documents/0d9c2b1e-vaccines.pdf")
    kwargs = storage.client.generate_presigned_url.call_args.kwargs
    assert kwargs["ClientMethod"] == "get_object"
    assert kwargs["ExpiresIn"] == 5 * 60
    assert kwargs["Params"]["ResponseContentDisposition"] == 'attachment; filename="vaccines.pdf"'

    deleted = api.client.delete(f"/api/v1/documents/{document['id']}", headers=auth_headers())
    assert deleted.status_code == 204
    storage.client.delete_object.assert_called_once_with(
        Bucket="animal-documents", Key="0d9c2b1e-vaccines.pdf"
    )

    missing = api.client.get(f"/api/v1/documents/{document['id']}/download-url", headers=auth_headers())
    assert missing.status_code == 404
    assert missing.json()["error"]["message"] == "Document record not found."


def test_duplicate_document_blob_is_409(api, staff):
    animal = create_animal(api.client)
    assert add_document(api.client, animal["id"]).status_code == 201
    assert add_document(api.client, animal["id"]).status_code == 409


def test_documents_require_staff(api):
    api.db.add_user(UserRole.GUEST, sub="auth0|guest")
    response = api.client.get("/api/v1/documents/9/download-url", headers=auth_headers("auth0|guest"))
    assert response.status_code == 403
