from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from fastapi import status

from creatorsync.errors import ProviderError, SyncConfigError

logger = logging.getLogger(__name__)

APIFY_ACTOR_RUN_URL = "https://api.apify.com/v2/acts/{actor_id}/runs"
APIFY_TASK_RUN_URL = "https://api.apify.com/v2/actor-tasks/{task_id}/runs"
APIFY_RUN_STATUS_URL = "https://api.apify.com/v2/actor-runs/{run_id}"
APIFY_DATASET_ITEMS_URL = "https://api.apify.com/v2/datasets/{dataset_id}/items"

TERMINAL_STATUSES = {"SUCCEEDED", "FAILED", "ABORTED", "TIMED-OUT"}
TASK_FALLBACK_STATUSES = {status.HTTP_403_FORBIDDEN, status.HTTP_404_NOT_FOUND}


def _normalize_actor_id(actor_id: str) -> str:
    """Apify expects username~actor-name."""
    if "~" in actor_id:
        return actor_id
    if "/" in actor_id:
        return actor_id.replace("/", "~", 1)
    return actor_id


def _json_body(resp: httpx.Response, **context: Any) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError(
            "Invalid Apify response",
            status=resp.status_code,
            body=resp.text[:400],
            **context,
        ) from exc


def _data_of(resp: httpx.Response, **context: Any) -> dict:
    body = _json_body(resp, **context)
    data = body.get("data") if isinstance(body, dict) else None
    return data if isinstance(data, dict) else {}


async def _start_run(client: httpx.AsyncClient, url: str, token: str, payload: dict[str, Any], target: str) -> str:
    try:
        run_resp = await client.post(url, params={"token": token}, json=payload)
    except httpx.HTTPError as exc:
        raise ProviderError("Apify run start failed", reason=str(exc), actor=target) from exc

    if run_resp.status_code >= 400:
        raise ProviderError(
            "Apify run start failed",
            status=run_resp.status_code,
            body=run_resp.text[:400],
            actor=target,
            input_keys=list(payload.keys()),
        )

    run_id = _data_of(run_resp, actor=target).get("id")
    if not run_id:
        raise ProviderError("Apify run id missing", actor=target, body=run_resp.text[:400])
    return run_id


async def _wait_for_run(
    client: httpx.AsyncClient,
    run_id: str,
    token: str,
    target: str,
    *,
    timeout_s: int,
    poll_interval_s: float,
) -> str:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while True:
        try:
            status_resp = await client.get(APIFY_RUN_STATUS_URL.format(run_id=run_id), params={"token": token})
        except httpx.HTTPError as exc:
            raise ProviderError("Apify run status failed", reason=str(exc), actor=target, runId=run_id) from exc
        if status_resp.status_code >= 400:
            raise ProviderError(
                "Apify run status failed",
                status=status_resp.status_code,
                body=status_resp.text[:400],
                actor=target,
                runId=run_id,
            )
        data = _data_of(status_resp, actor=target, runId=run_id)
        final_status = data.get("status")
        if final_status in TERMINAL_STATUSES:
            if final_status != "SUCCEEDED":
                raise ProviderError(
                    "Apify run failed",
                    actor=target,
                    runId=run_id,
                    status=final_status,
                    errorMessage=data.get("errorMessage"),
                )
            dataset_id = data.get("defaultDatasetId")
            if not dataset_id:
                raise ProviderError("Apify dataset missing", actor=target, runId=run_id, status=final_status)
            return dataset_id
        if loop.time() > deadline:
            raise ProviderError(
                "Apify run timed out",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                actor=target,
                runId=run_id,
                status=final_status,
            )
        await asyncio.sleep(poll_interval_s)


async def fetch_dataset_items(
    client: httpx.AsyncClient,
    dataset_id: str,
    token: str,
    *,
    clean: bool = True,
    limit: int = 100,
) -> list[dict]:
    """Read dataset items page by page, up to `limit`."""
    items: list[dict] = []
    page_size = min(limit, 1000)
    offset = 0
    while len(items) < limit:
        try:
            ds_resp = await client.get(
                APIFY_DATASET_ITEMS_URL.format(dataset_id=dataset_id),
                params={
                    "token": token,
                    "clean": "true" if clean else "false",
                    "limit": page_size,
                    "offset": offset,
                },
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ProviderError("Apify dataset fetch failed", datasetId=dataset_id, reason=str(exc)) from exc
        if ds_resp.status_code >= 400:
            raise ProviderError(
                "Apify dataset fetch failed",
                datasetId=dataset_id,
                status=ds_resp.status_code,
                body=ds_resp.text[:400],
            )
        page_items = _json_body(ds_resp, datasetId=dataset_id)
        if not isinstance(page_items, list):
            raise ProviderError("Invalid dataset response", datasetId=dataset_id, body=str(page_items)[:400])
        items.extend(page_items)
        if len(page_items) < page_size:
            break
        offset += page_size
    return items[:limit]


async def run_and_get_dataset_items(
    payload: dict[str, Any],
    *,
    token: str | None,
    actor_id: str,
    task_id: str | None = None,
    clean: bool = True,
    limit: int = 100,
    timeout_s: int = 300,
    poll_interval_s: float = 2.0,
    client: httpx.AsyncClient | None = None,
) -> tuple[list[dict], dict]:
    """
    Start a run (saved task if configured, otherwise the actor), wait for it
    to finish, then read items from its dataset.
    Returns (items, meta).
    """
    if not token:
        raise SyncConfigError("APIFY_TOKEN missing")

    normalized_id = _normalize_actor_id(actor_id)
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout_s)

    try:
        target = normalized_id
        run_id: str | None = None
        if task_id:
            try:
                run_id = await _start_run(client, APIFY_TASK_RUN_URL.format(task_id=task_id), token, payload, task_id)
                target = task_id
            except ProviderError as exc:
                if exc.context.get("status") not in TASK_FALLBACK_STATUSES:
                    raise
                logger.warning(f"[apify] Task {task_id} unavailable ({exc.context.get('status')}), falling back to actor {normalized_id}")
        if run_id is None:
            run_id = await _start_run(client, APIFY_ACTOR_RUN_URL.format(actor_id=normalized_id), token, payload, normalized_id)

        dataset_id = await _wait_for_run(
            client, run_id, token, target, timeout_s=timeout_s, poll_interval_s=poll_interval_s
        )
        items = await fetch_dataset_items(client, dataset_id, token, clean=clean, limit=limit)
    finally:
        if own_client:
            await client.aclose()

    meta = {"actorId": target, "runId": run_id, "datasetId": dataset_id, "status": "SUCCEEDED"}
    return items, meta
