from sqlmodel import select

from app.db.schema import SecureLink


def _latest_link(session, email):
    return session.exec(
        select(SecureLink).where(SecureLink.email == email).order_by(SecureLink.created_at.desc())
    ).first()


def test_index(client):
    response = client.get("/api/v1/")
    assert response.status_code == 200
    assert response.json()["status"] == "API is running"


def test_readiness(client):
    response = client.get("/api/v1/readiness")
    assert response.status_code == 200
    assert response.json()["database"] == "online"


# ==============================================================================
# AUTH
# ==============================================================================


def test_magic_link_response_does_not_reveal_accounts(client, company_admin):
    known = client.post("/api/v1/auth/magic-link", json={"email": company_admin.email})
    unknown = client.post("/api/v1/auth/magic-link", json={"email": "nobody@acme.example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()


def test_magic_link_login_is_single_use(client, session, company_admin):
    client.post("/api/v1/auth/magic-link", json={"email": company_admin.email})
    identifier = _latest_link(session, company_admin.email).secure_identifier

    first = client.post("/api/v1/auth/verify", json={"token": identifier})
    assert first.status_code == 200
    body = first.json()
    assert body["user"]["email"] == company_admin.email
    assert body["organization"]["type"] == "company"

    me = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {body['tokens']['access_token']}"})
    assert me.status_code == 200
    assert me.json()["user"]["id"] == str(company_admin.id)

    second = client.post("/api/v1/auth/verify", json={"token": identifier})
    assert second.status_code == 401
    assert second.json()["error"] == "invalid_link"


def test_refresh_returns_new_pair(client, session, company_admin):
    client.post("/api/v1/auth/magic-link", json={"email": company_admin.email})
    identifier = _latest_link(session, company_admin.email).secure_identifier
    tokens = client.post("/api/v1/auth/verify", json={"token": identifier}).json()["tokens"]

    refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["token_type"] == "bearer"

    # An access token is not accepted as a refresh token
    rejected = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert rejected.status_code == 401


def test_magic_link_rate_limit(client, company_admin):
    for _ in range(3):
        assert client.post(
            "/api/v1/auth/magic-link", json={"email": company_admin.email}).status_code == 200

    response = client.post("/api/v1/auth/magic-link", json={"email": company_admin.email})
    assert response.status_code == 429
    assert response.json()["error"] == "rate_limit_exceeded"


def test_authentication_required(client):
    response = client.get("/api/v1/relationships/")
    assert response.status_code == 401
    assert set(response.json()) == {"error", "message"}


def test_supplier_cannot_use_company_routes(client, auth_headers, supplier_admin):
    response = client.get("/api/v1/relationships/", headers=auth_headers(supplier_admin))
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_validation_error_format(client, auth_headers, company_admin):
    response = client.post(
        "/api/v1/relationships/", json={"email": "not-an-email"}, headers=auth_headers(company_admin))
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_failed"
    assert body["message"]


def test_unknown_relationship_is_404(client, auth_headers, company_admin):
    response = client.get(
        "/api/v1/relationships/00000000-0000-0000-0000-000000000000",
        headers=auth_headers(company_admin))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


# ==============================================================================
# END TO END
# ==============================================================================


def test_invite_to_approval(client, auth_headers, company_admin, supplier_admin,
                            published_questionnaire, questions):
    company = auth_headers(company_admin)
    supplier = auth_headers(supplier_admin)

    # 1. Company invites the supplier
    invite = client.post(
        "/api/v1/relationships/", json={"email": supplier_admin.email}, headers=company)
    assert invite.status_code == 201
    relationship_id = invite.json()["id"]
    assert invite.json()["status"] == "pending"

    # 2. Supplier sees and accepts the invitation
    invitations = client.get("/api/v1/supplier/invitations", headers=supplier).json()
    assert [i["id"] for i in invitations] == [relationship_id]

    accepted = client.post(
        f"/api/v1/supplier/invitations/{relationship_id}/accept", headers=supplier)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "active"

    # 3. Company assigns the questionnaire
    created = client.post("/api/v1/requirements/", json={
        "relationship_id": relationship_id,
        "type": "questionnaire",
        "title": "Security basics",
        "questionnaire_id": str(published_questionnaire.id),
    }, headers=company)
    assert created.status_code == 201
    requirement_id = created.json()["id"]

    # 4. Supplier starts, saves a draft and submits
    started = client.post(f"/api/v1/supplier/requirements/{requirement_id}/start", headers=supplier)
    assert started.status_code == 200
    response_id = started.json()["id"]

    answers = [{"question_id": str(q.id), "selected_options": ["yes"]} for q in questions]
    draft = client.put(
        f"/api/v1/supplier/responses/{response_id}/draft",
        json={"answers": answers[:1]}, headers=supplier)
    assert len(draft.json()["draft_answers"]) == 1

    submitted = client.post(
        f"/api/v1/supplier/responses/{response_id}/submit",
        json={"answers": answers}, headers=supplier)
    assert submitted.status_code == 201
    assert submitted.json()["percentage_score"] == 100.0
    assert submitted.json()["passed"] is True

    # Submitting twice is refused
    again = client.post(
        f"/api/v1/supplier/responses/{response_id}/submit",
        json={"answers": answers}, headers=supplier)
    assert again.status_code == 400
    assert again.json()["error"] == "response_already_submitted"

    # 5. Company reviews
    review = client.get(f"/api/v1/requirements/{requirement_id}/submission", headers=company)
    assert review.status_code == 200
    assert review.json()["effective_score"] == 20

    approved = client.post(
        f"/api/v1/requirements/{requirement_id}/approve",
        json={"notes": "All good"}, headers=company)
    assert approved.status_code == 200
    body = approved.json()
    assert body["status"] == "approved"
    assert [(h["from_status"], h["to_status"]) for h in body["status_history"]] == [
        (None, "pending"),
        ("pending", "in_progress"),
        ("in_progress", "submitted"),
        ("submitted", "approved"),
    ]

    # Reviewing again is refused
    rejected = client.post(
        f"/api/v1/requirements/{requirement_id}/reject",
        json={"reason": "Too late"}, headers=company)
    assert rejected.status_code == 400
    assert rejected.json()["error"] == "cannot_review"


def test_reject_needs_reason(client, auth_headers, company_admin, active_relationship,
                             published_questionnaire):
    created = client.post("/api/v1/requirements/", json={
        "relationship_id": str(active_relationship.id),
        "type": "questionnaire",
        "title": "Security basics",
        "questionnaire_id": str(published_questionnaire.id),
    }, headers=auth_headers(company_admin))

    response = client.post(
        f"/api/v1/requirements/{created.json()['id']}/reject",
        json={"reason": ""}, headers=auth_headers(company_admin))
    assert response.status_code == 400


# ==============================================================================
# PARTIAL UPDATES
# ==============================================================================


def test_clearing_requirement_title_is_a_validation_error(client, auth_headers, company_admin,
                                                          active_relationship,
                                                          published_questionnaire):
    headers = auth_headers(company_admin)
    created = client.post("/api/v1/requirements/", json={
        "relationship_id": str(active_relationship.id),
        "type": "questionnaire",
        "title": "Security basics",
        "questionnaire_id": str(published_questionnaire.id),
    }, headers=headers)

    response = client.patch(
        f"/api/v1/requirements/{created.json()['id']}", json={"title": None}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"

    current = client.get(f"/api/v1/requirements/{created.json()['id']}", headers=headers)
    assert current.json()["title"] == "Security basics"


def test_clearing_services_keeps_relationship_readable(client, auth_headers, company_admin,
                                                       active_relationship):
    headers = auth_headers(company_admin)
    url = f"/api/v1/relationships/{active_relationship.id}"

    response = client.patch(url, json={"services_provided": None}, headers=headers)
    assert response.status_code == 200
    assert response.json()["services_provided"] == []

    assert client.get(url, headers=headers).json()["services_provided"] == []
    listed = client.get("/api/v1/relationships/", headers=headers).json()
    assert listed["items"][0]["services_provided"] == []


# ==============================================================================
# TEMPLATES
# ==============================================================================


def test_template_lifecycle_over_http(client, auth_headers, company_admin):
    headers = auth_headers(company_admin)

    imported = client.post("/api/v1/templates/import", json={
        "name": "Imported GDPR",
        "category": "GDPR",
        "topics": [{"id": "consent", "name": "Consent"}],
    }, headers=headers)
    assert imported.status_code == 201
    template_id = imported.json()["id"]
    assert imported.json()["visibility"] == "draft"

    mine = client.get("/api/v1/templates/mine", headers=headers).json()
    assert mine["total"] == 1

    published = client.post(
        f"/api/v1/templates/{template_id}/publish", json={"visibility": "local"}, headers=headers)
    assert published.status_code == 200
    assert published.json()["visibility"] == "local"

    available = client.get("/api/v1/templates/", params={"category": "gdpr"}, headers=headers)
    assert [t["id"] for t in available.json()["items"]] == [template_id]

    started = client.post(
        f"/api/v1/templates/{template_id}/questionnaires", json={"name": "Q3 GDPR"}, headers=headers)
    assert started.status_code == 201
    assert started.json()["template_id"] == template_id
    assert started.json()["topics"][0]["id"] == "consent"

    deleted = client.delete(f"/api/v1/templates/{template_id}", headers=headers)
    assert deleted.status_code == 400
    assert deleted.json()["error"] == "cannot_modify"


def test_template_writes_need_a_company_admin(client, auth_headers, supplier_admin):
    response = client.post(
        "/api/v1/templates/", json={"name": "Supplier Template"},
        headers=auth_headers(supplier_admin))
    assert response.status_code == 403
