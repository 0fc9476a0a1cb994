import pytest

from stackdeploy.domain.entities import OutcomeResult, TriggerSource

JOB = "/api/v1/jobs/webapp-deploy"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["live_stack"] == "empty"
    assert data["pipeline_busy"] is False
    assert "X-Process-Time" in response.headers


@pytest.mark.asyncio
async def test_manual_trigger_queues_run(client, orchestrator):
    response = await client.post(f"{JOB}/build", json={"revision_id": "abc123"})

    assert response.status_code == 202
    data = response.json()
    assert data["accepted"] is True
    assert data["run_number"] == 1
    assert data["request"]["trigger_source"] == "manual"
    assert orchestrator.pipeline.get_run(1).request.revision_id == "abc123"


@pytest.mark.asyncio
async def test_manual_trigger_defaults_to_branch_tip(client, git):
    git.tip = "fedcba987654"

    response = await client.post(f"{JOB}/build")

    assert response.status_code == 202
    assert response.json()["request"]["revision_id"] == "fedcba987654"


@pytest.mark.asyncio
async def test_duplicate_manual_trigger_is_not_accepted(client, orchestrator, worker):
    await client.post(f"{JOB}/build", json={"revision_id": "abc123"})
    await orchestrator.pipeline.drain()

    response = await client.post(f"{JOB}/build", json={"revision_id": "abc123"})

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert len(orchestrator.pipeline.runs()) == 1


@pytest.mark.asyncio
async def test_full_queue_returns_conflict(client):
    await client.post(f"{JOB}/build", json={"revision_id": "abc123"})

    response = await client.post(f"{JOB}/build", json={"revision_id": "def456"})

    assert response.status_code == 409
    assert response.json()["error_code"] == "PIPELINE_BUSY"


@pytest.mark.asyncio
async def test_unreachable_source_returns_bad_gateway(client, git):
    git.unreachable = True

    response = await client.post(f"{JOB}/build")

    assert response.status_code == 502
    assert response.json()["error_code"] == "SOURCE_FETCH_FAILED"


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(client):
    response = await client.post("/api/v1/jobs/other-job/build", json={"revision_id": "abc123"})

    assert response.status_code == 404
    assert response.json()["error_code"] == "UNKNOWN_JOB"


@pytest.mark.asyncio
async def test_push_to_tracked_branch_queues_run(client, orchestrator):
    response = await client.post("/api/v1/webhooks/push", json={"ref": "refs/heads/main", "after": "abc123"})

    assert response.status_code == 202
    run = orchestrator.pipeline.get_run(response.json()["run_number"])
    assert run.request.trigger_source == TriggerSource.PUSH_EVENT


@pytest.mark.asyncio
async def test_push_to_other_branch_is_ignored(client, orchestrator):
    response = await client.post("/api/v1/webhooks/push", json={"ref": "refs/heads/feature", "after": "abc123"})

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert orchestrator.pipeline.runs() == []


@pytest.mark.asyncio
async def test_run_stages_console_and_stack_after_deploy(client, orchestrator, worker):
    await client.post(f"{JOB}/build", json={"revision_id": "abc123"})
    await orchestrator.pipeline.drain()

    runs = (await client.get(f"{JOB}/runs")).json()
    assert runs["count"] == 1

    run = (await client.get(f"{JOB}/runs/1")).json()
    assert [stage["status"] for stage in run["stages"]] == ["succeeded"] * 3
    assert run["outcome"]["result"] == OutcomeResult.SUCCESS.value

    console = await client.get(f"{JOB}/runs/1/console")
    assert console.headers["content-type"].startswith("text/plain")
    assert "Building webapp:abc123" in console.text

    stack = (await client.get("/api/v1/stack")).json()
    assert stack["status"] == "live"
    assert stack["stack"]["artifact"]["image_tag"] == "webapp:abc123"

    manifest = await client.get("/api/v1/stack/manifest")
    assert manifest.status_code == 200
    assert set(manifest.json()["services"]) == {"database", "app", "proxy"}

    outcomes = (await client.get("/api/v1/outcomes", params={"limit": 5})).json()
    assert outcomes["count"] == 1


@pytest.mark.asyncio
async def test_missing_run_is_not_found(client):
    response = await client.get(f"{JOB}/runs/42")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manifest_without_live_stack(client):
    response = await client.get("/api/v1/stack/manifest")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_rollback_without_history_conflicts(client):
    response = await client.post("/api/v1/stack/rollback", json={"reason": "bad release"})

    assert response.status_code == 409
    assert response.json()["error_code"] == "NO_PRIOR_STATE"


@pytest.mark.asyncio
async def test_rollback_requires_a_reason(client):
    response = await client.post("/api/v1/stack/rollback", json={"reason": "no"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rollback_restores_previous_release(client, orchestrator, worker):
    for revision in ("abc123", "def456"):
        await client.post(f"{JOB}/build", json={"revision_id": revision})
        await orchestrator.pipeline.drain()

    response = await client.post("/api/v1/stack/rollback", json={"reason": "customer reported errors"})

    assert response.status_code == 200
    data = response.json()
    assert data["result"] == "rolled_back"
    assert data["image_tag"] == "webapp:abc123"
