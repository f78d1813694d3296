"""Global fixtures for the Command Gateway test suite."""

from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from gateway.assistant_cli import AssistantCLI
from gateway.auth import Auth
from gateway.cli_router import CliRouter
from gateway.executor import CommandExecutor
from gateway.rate_limit import MemoryBucketStore, RateLimiter, build_profiles
from gateway.server import GatewayServer
from utils.settings import GatewaySettings

WEBHOOK_SECRET = "whsec-test-0123456789abcdef0123456789abcdef"
ALICE_TOKEN = "alice-token-0123456789abcdef0123456789"
BOB_TOKEN = "bob-token-fedcba9876543210fedcba987654"

# Large enough that os.getpgid() never finds a real process.
FAKE_PID = 99_999_999


# ── Fake subprocess ──


class FakeStream:
    def __init__(self, data: bytes = b""):
        self._data = data

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data)
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process`` that exits immediately."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
        self.pid = FAKE_PID
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self._exit_code = returncode
        self.returncode: Optional[int] = None
        self.killed = False

    async def wait(self) -> int:
        self.returncode = self._exit_code
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


class SpawnSpy:
    """Records every spawn attempt; returns a queued FakeProcess or raises."""

    def __init__(self):
        self.calls: List[Tuple[Tuple[str, ...], dict]] = []
        self.queue: List[FakeProcess] = []
        self.next_process: Optional[FakeProcess] = None
        self.error: Optional[BaseException] = None

    async def __call__(self, *argv, **kwargs):
        self.calls.append((tuple(argv), kwargs))
        if self.error is not None:
            raise self.error
        if self.queue:
            return self.queue.pop(0)
        return self.next_process or FakeProcess(stdout=b"ok\n")

    @property
    def count(self) -> int:
        return len(self.calls)

    @property
    def last_argv(self) -> Tuple[str, ...]:
        return self.calls[-1][0]


class FakeClock:
    """Millisecond clock driven by the test."""

    def __init__(self, start_ms: float = 1_000_000.0):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeAssistantBackend:
    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self.fail = False

    async def _record(self, name: str, *args):
        self.calls.append((name, args))
        if self.fail:
            raise RuntimeError("backend down")
        return f"{name} result"

    async def explain(self, code, language):
        return await self._record("explain", code, language)

    async def analyze(self, code, language):
        self.calls.append(("analyze", (code, language)))
        return {"issues": [], "score": 9}

    async def generate_tests(self, code, language):
        return await self._record("generate_tests", code, language)

    async def generate_docs(self, code, language):
        return await self._record("generate_docs", code, language)

    async def refactor(self, code, language, instructions):
        return await self._record("refactor", code, language, instructions)

    async def complete(self, code, language):
        return await self._record("complete", code, language)


# ── Fixtures ──


@pytest.fixture
def spawn_spy():
    return SpawnSpy()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor(spawn_spy):
    return CommandExecutor(spawn=spawn_spy)


@pytest.fixture
def assistant_backend():
    return FakeAssistantBackend()


@pytest.fixture
def cli_router(executor, assistant_backend):
    return CliRouter(executor, AssistantCLI(assistant_backend))


@pytest.fixture
def limiter(clock):
    return RateLimiter(build_profiles(), MemoryBucketStore(), salt="test-salt", clock=clock)


@pytest.fixture
def auth():
    return Auth(api_tokens={"alice": ALICE_TOKEN, "bob": BOB_TOKEN})


@pytest.fixture
def settings():
    return GatewaySettings(
        environment="test",
        webhook_secret=WEBHOOK_SECRET,
        api_tokens={"alice": ALICE_TOKEN, "bob": BOB_TOKEN},
        fingerprint_salt="test-salt",
    )


@pytest.fixture
def gateway_server(settings, limiter, auth, cli_router):
    return GatewayServer(settings, limiter=limiter, auth=auth, cli_router=cli_router)


@pytest_asyncio.fixture
async def client(gateway_server):
    async with TestClient(TestServer(gateway_server.build_app())) as test_client:
        yield test_client


@pytest.fixture
def alice_headers():
    return {"Authorization": f"Bearer {ALICE_TOKEN}"}
