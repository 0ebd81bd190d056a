import asyncio
import base64

import pytest
from fastapi.testclient import TestClient

from main import app
from manual_rag.components.chat.composer import AnswerComposer
from manual_rag.config.processor import processor_config
from manual_rag.routers.chat_routes import get_composer
from manual_rag.routers.document_routes import get_knowledge_base, get_orchestrator, get_storage
from manual_rag.services.storage import LocalAssetStorage, image_key

from .conftest import FakeChatModel, manual_page_responder

def page_payload(page_number):
    return {
        "page_number": page_number,
        "image": "data:image/jpeg;base64," + base64.b64encode(f"page-{page_number}".encode()).decode(),
    }

@pytest.fixture
def client(knowledge_base, storage, embedding_generator, make_orchestrator):
    state = {"page_model": FakeChatModel(manual_page_responder), "chat_model": FakeChatModel([])}

    app.dependency_overrides[get_knowledge_base] = lambda: knowledge_base
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator(page_model=state["page_model"])
    app.dependency_overrides[get_composer] = lambda: AnswerComposer(
        state["chat_model"], embedding_generator, knowledge_base
    )
    with TestClient(app) as test_client:
        test_client.fakes = state
        yield test_client
    app.dependency_overrides.clear()

def upload(client, user_id="u1", content=b"%PDF-1.4 manual", filename="manual.pdf", content_type="application/pdf"):
    return client.post(
        "/api/v1/documents/upload",
        data={"user_id": user_id},
        files={"file": (filename, content, content_type)},
    )

def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["health_check"] == "/health"

def test_upload_stores_pdf_and_registers_document(client, storage, knowledge_base):
    response = upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "u1"
    assert body["file_path"] == "u1/document.pdf"
    assert body["original_filename"] == "manual.pdf"
    assert storage.document_path("u1/document.pdf").read_bytes() == b"%PDF-1.4 manual"
    document = asyncio.run(knowledge_base.get_document("u1"))
    assert document.id == body["document_id"]
    assert not document.processed

def test_upload_rejects_non_pdf(client):
    response = upload(client, filename="notes.txt", content_type="text/plain")
    assert response.status_code == 400

def test_upload_requires_user_id(client):
    response = upload(client, user_id="   ")
    assert response.status_code == 400

def test_process_and_status(client):
    document_id = upload(client).json()["document_id"]

    response = client.post("/api/v1/documents/process", json={
        "document_id": document_id,
        "user_id": "u1",
        "page_images": [page_payload(n) for n in (1, 2, 3)],
    })

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "chunks_count": 4,
        "images_count": 0,
        "total_pages": 3,
        "processing_method": "vision",
        "summary": None,
    }

    status = client.get("/api/v1/documents/u1").json()
    assert status["processed"] is True
    assert status["chunks_count"] == 4
    assert status["processing_method"] == "vision"

def test_process_failure_returns_500_payload(client):
    document_id = upload(client).json()["document_id"]
    client.fakes["page_model"] = FakeChatModel(lambda messages: RuntimeError("vision down"))

    response = client.post("/api/v1/documents/process", json={
        "document_id": document_id,
        "user_id": "u1",
        "page_images": [page_payload(1)],
    })

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "No text content extracted from PDF"}
    assert client.get("/api/v1/documents/u1").json()["processed"] is False

def test_process_unknown_document_is_404(client):
    response = client.post("/api/v1/documents/process", json={"document_id": 42, "user_id": "nobody"})
    assert response.status_code == 404

def test_process_rejects_bad_input(client):
    document_id = upload(client).json()["document_id"]

    assert client.post("/api/v1/documents/process", json={
        "document_id": 0, "user_id": "u1",
    }).status_code == 400
    assert client.post("/api/v1/documents/process", json={
        "document_id": document_id, "user_id": "u1",
        "embedded_images": [{"page_number": 1, "index": 1, "data": "***not base64***"}],
    }).status_code == 400
    assert client.post("/api/v1/documents/process", json={"user_id": "u1"}).status_code == 422

def test_status_of_unknown_user_is_404(client):
    assert client.get("/api/v1/documents/ghost").status_code == 404

def test_chat_answers_from_processed_manual(client):
    document_id = upload(client).json()["document_id"]
    client.post("/api/v1/documents/process", json={
        "document_id": document_id,
        "user_id": "u1",
        "page_images": [page_payload(n) for n in (1, 2, 3)],
    })
    client.fakes["chat_model"].responses.append("1. Open the front cover.\n2. Remove the old filter cartridge.")

    response = client.post("/api/v1/chat/", json={"message": "How do I replace the pump filter?", "user_id": "u1"})

    assert response.status_code == 200
    body = response.json()
    assert body["steps"] == ["1. Open the front cover.", "2. Remove the old filter cartridge."]
    assert body["images"] == []
    assert body["raw_response"].startswith("1. Open the front cover.")

def test_chat_rejects_blank_message(client):
    response = client.post("/api/v1/chat/", json={"message": "  ", "user_id": "u1"})
    assert response.status_code == 400

def test_uploaded_pdf_is_not_served_as_asset(client):
    configured = LocalAssetStorage.from_config(processor_config.storage_config)
    app.dependency_overrides[get_storage] = lambda: configured

    assert upload(client, user_id="owner", content=b"%PDF-1.4 private manual").status_code == 200
    asyncio.run(configured.save(image_key("owner", 1, 1, 1, "png"), b"img"))

    assert configured.document_path("owner/document.pdf").read_bytes() == b"%PDF-1.4 private manual"
    assert client.get("/assets/owner/document.pdf").status_code == 404
    assert client.get("/assets/owner/1/page_1_img_1.png").content == b"img"
