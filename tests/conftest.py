"""Shared test fixtures for the voice2text test suite.

WHY: Every remote step (token, assets, locators, blobs, jobs) talks HTTP.
A single in-memory fake of Azure AD, the Media Services REST endpoint and
blob storage lets tests drive the real client code end to end without a
network.

HOW: FakeMediaServices is an httpx.MockTransport handler. It keeps assets,
blobs, policies, locators and jobs in dicts, answers in the OData verbose
JSON shape, and plays a scripted list of job states, one per poll.

RULES:
- Any .../oauth2/token path is Azure AD; ams.example.net/api is REST,
  storage.example.net serves blobs
- Entity ids are simple strings ("asset-1") so URLs stay readable
- Tests configure job_states / task_errors / output_files /
  no_output_assets before running
- Every request is recorded in ``requests`` for assertions
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest

from voice2text.api.auth import TokenCredentials
from voice2text.config import Settings

ENDPOINT = "https://ams.example.net/api/"
AUTHORITY = "https://login.example.net"
STORAGE = "https://storage.example.net"

SAMPLE_VTT = """WEBVTT

NOTE duration:"00:00:04.0000000"

NOTE language:en-us

NOTE Confidence: 0.91

00:00:00.000 --> 00:00:02.000
Hello and welcome to the show.

NOTE Confidence: 0.87

00:00:02.000 --> 00:00:04.000
Today we talk about speech.
"""


@dataclass
class FakeJob:
    id: str
    name: str
    input_asset_id: str
    configuration: str
    processor_id: str
    output_asset_name: str
    states: List[int]
    polls: int = 0
    current: int = 0
    cancelled: bool = False
    output_asset_id: Optional[str] = None

    def advance(self) -> int:
        """Move to the next scripted state (the last one repeats)."""
        self.current = self.states[min(self.polls, len(self.states) - 1)]
        self.polls += 1
        return self.current


@dataclass
class FakeMediaServices:
    """In-memory Azure AD + Media Services + blob storage."""

    processors: List[Dict] = field(default_factory=lambda: [
        {"Id": "nb:mpid:UUID:old", "Name": "Azure Media Indexer 2 Preview", "Version": "1.9"},
        {"Id": "nb:mpid:UUID:new", "Name": "Azure Media Indexer 2 Preview", "Version": "2.1"},
        {"Id": "nb:mpid:UUID:mid", "Name": "Azure Media Indexer 2 Preview", "Version": "2.0"},
        {"Id": "nb:mpid:UUID:enc", "Name": "Media Encoder Standard", "Version": "9.9"},
    ])
    job_states: List[int] = field(default_factory=lambda: [0, 1, 2, 3])
    task_errors: List[Dict] = field(default_factory=list)
    output_files: Dict[str, bytes] = field(default_factory=dict)
    reject_token: bool = False
    fail_blob_gets: bool = False
    no_output_assets: bool = False

    def __post_init__(self) -> None:
        self.assets: Dict[str, Dict] = {}
        self.blobs: Dict[str, bytes] = {}
        self.staged_blocks: Dict[str, Dict[str, bytes]] = {}
        self.policies: Dict[str, Dict] = {}
        self.locators: Dict[str, Dict] = {}
        self.jobs: Dict[str, FakeJob] = {}
        self.deleted_assets: List[str] = []
        self.requests: List[httpx.Request] = []
        self._counter = 0

    # -- helpers -----------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return "{}-{}".format(prefix, self._counter)

    @staticmethod
    def _entity(data: Dict, status: int = 200) -> httpx.Response:
        return httpx.Response(status, json={"d": data})

    @staticmethod
    def _collection(items: List[Dict]) -> httpx.Response:
        return httpx.Response(200, json={"d": {"results": items}})

    def asset_files(self, asset_id: str) -> List[Dict]:
        prefix = asset_id + "/"
        return [
            {
                "Id": "file-{}".format(key),
                "Name": key[len(prefix):],
                "ParentAssetId": asset_id,
                "ContentFileSize": str(len(data)),
            }
            for key, data in sorted(self.blobs.items())
            if key.startswith(prefix)
        ]

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [
            unquote(r.url.path) for r in self.requests if method is None or r.method == method
        ]

    # -- dispatch ----------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/oauth2/token"):
            return self._token(request)
        if request.url.host == "storage.example.net":
            return self._blob(request)
        return self._rest(request)

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.reject_token:
            return httpx.Response(
                401,
                json={"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"},
            )
        return httpx.Response(
            200,
            json={"token_type": "Bearer", "access_token": "fake-token", "expires_on": "1767225600"},
        )

    def _blob(self, request: httpx.Request) -> httpx.Response:
        container, _, name = unquote(request.url.path).lstrip("/").partition("/")
        key = "{}/{}".format(container, name)
        params = request.url.params
        if request.method == "PUT" and params.get("comp") == "block":
            self.staged_blocks.setdefault(key, {})[params["blockid"]] = request.content
            return httpx.Response(201)
        if request.method == "PUT" and params.get("comp") == "blocklist":
            staged = self.staged_blocks.pop(key, {})
            ids = re.findall(r"<Latest>([^<]+)</Latest>", request.content.decode("utf-8"))
            self.blobs[key] = b"".join(staged[i] for i in ids)
            return httpx.Response(201)
        if request.method == "GET":
            if self.fail_blob_gets or key not in self.blobs:
                return httpx.Response(404, text="BlobNotFound")
            data = self.blobs[key]
            range_header = request.headers.get("Range")
            if range_header:
                start, end = (int(x) for x in range_header.split("=")[1].split("-"))
                return httpx.Response(206, content=data[start:end + 1])
            return httpx.Response(200, content=data)
        return httpx.Response(405)

    def _rest(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        assert path.startswith("/api/"), path
        path = path[len("/api"):]
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if request.headers.get("Authorization") != "Bearer fake-token":
            return httpx.Response(401, text="Unauthorized")

        if path == "/Assets" and method == "POST":
            asset_id = self._next_id("asset")
            asset = {"Id": asset_id, "Name": body["Name"], "Options": body.get("Options", 0)}
            self.assets[asset_id] = asset
            return self._entity(asset, 201)

        match = re.fullmatch(r"/Assets\('([^']+)'\)(/Files)?", path)
        if match:
            asset_id, files = match.groups()
            if asset_id not in self.assets:
                return httpx.Response(404, text="Asset not found")
            if files:
                return self._collection(self.asset_files(asset_id))
            if method == "DELETE":
                del self.assets[asset_id]
                self.deleted_assets.append(asset_id)
                return httpx.Response(204)

        if path == "/CreateFileInfos":
            return httpx.Response(204)

        if path == "/AccessPolicies" and method == "POST":
            policy_id = self._next_id("policy")
            self.policies[policy_id] = dict(body, Id=policy_id)
            return self._entity(self.policies[policy_id], 201)

        if path == "/Locators" and method == "POST":
            locator_id = self._next_id("locator")
            locator = {
                "Id": locator_id,
                "AssetId": body["AssetId"],
                "AccessPolicyId": body["AccessPolicyId"],
                "Type": body["Type"],
                "BaseUri": "{}/{}".format(STORAGE, body["AssetId"]),
                "ContentAccessComponent": "?sv=2017-04-17&sig=fake",
            }
            self.locators[locator_id] = locator
            return self._entity(locator, 201)

        match = re.fullmatch(r"/(Locators|AccessPolicies)\('([^']+)'\)", path)
        if match and method == "DELETE":
            store = self.locators if match.group(1) == "Locators" else self.policies
            store.pop(match.group(2), None)
            return httpx.Response(204)

        if path == "/MediaProcessors":
            name_filter = request.url.params.get("$filter", "")
            wanted = re.fullmatch(r"Name eq '(.*)'", name_filter)
            items = [
                p for p in self.processors
                if not wanted or p["Name"] == wanted.group(1).replace("''", "'")
            ]
            return self._collection(items)

        if path == "/Jobs" and method == "POST":
            return self._create_job(body)

        match = re.fullmatch(r"/Jobs\('([^']+)'\)(/Tasks|/OutputMediaAssets)?", path)
        if match:
            job = self.jobs.get(match.group(1))
            if job is None:
                return httpx.Response(404, text="Job not found")
            if match.group(2) == "/Tasks":
                return self._collection([self._task(job)])
            if match.group(2) == "/OutputMediaAssets":
                if self.no_output_assets:
                    return self._collection([])
                return self._collection([self.assets[job.output_asset_id]])
            return self._entity({"Id": job.id, "Name": job.name, "State": job.advance()})

        if path == "/CancelJob":
            job_id = request.url.params["jobid"].strip("'")
            job = self.jobs[job_id]
            job.cancelled = True
            job.states = job.states[:job.polls] + [6, 5]
            return httpx.Response(204)

        return httpx.Response(404, text="No route for {} {}".format(method, path))

    def _create_job(self, body: Dict) -> httpx.Response:
        task = body["Tasks"][0]
        input_uri = body["InputMediaAssets"][0]["__metadata"]["uri"]
        input_asset_id = re.search(r"Assets\('([^']+)'\)", unquote(input_uri)).group(1)
        output_name = re.search(r'assetName="([^"]+)"', task["TaskBody"]).group(1)

        output_asset_id = self._next_id("asset")
        self.assets[output_asset_id] = {"Id": output_asset_id, "Name": output_name, "Options": 0}
        for name, data in self.output_files.items():
            self.blobs["{}/{}".format(output_asset_id, name)] = data

        job = FakeJob(
            id=self._next_id("job"),
            name=body["Name"],
            input_asset_id=input_asset_id,
            configuration=task["Configuration"],
            processor_id=task["MediaProcessorId"],
            output_asset_name=output_name,
            states=list(self.job_states),
            output_asset_id=output_asset_id,
        )
        self.jobs[job.id] = job
        return self._entity({"Id": job.id, "Name": job.name, "State": 0}, 201)

    def _task(self, job: FakeJob) -> Dict:
        state = job.current
        progress = {0: 0.0, 1: 0.0, 2: 50.0, 3: 100.0}.get(state, 0.0)
        errors = self.task_errors if state == 4 else []
        return {
            "Id": "task-" + job.id,
            "Name": "Voice2Text Task",
            "Progress": progress,
            "State": state,
            "ErrorDetails": {"results": errors},
        }


@pytest.fixture
def fake_service():
    """A fresh fake Media Services account for each test."""
    return FakeMediaServices(output_files={"speech_aud_SpReco.vtt": SAMPLE_VTT.encode("utf-8")})


@pytest.fixture
def credentials():
    return TokenCredentials(access_token="fake-token")


@pytest.fixture
def settings():
    return Settings.model_validate({
        "AMSRestAPIEndpoint": ENDPOINT,
        "AMSTenantDomain": "contoso.onmicrosoft.com",
        "AMSAClientId": "client-id",
        "AMSClientSecret": "client-secret",
    })


@pytest.fixture
def media_file(tmp_path):
    """speech.mp4 with a config.json beside it."""
    media = tmp_path / "speech.mp4"
    media.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"x" * 100)
    (tmp_path / "config.json").write_text('{"Features": ["SpReco"]}', encoding="utf-8")
    return media


@pytest.fixture
def sample_vtt():
    """Caption text in the shape Azure Media Indexer 2 produces."""
    return SAMPLE_VTT
