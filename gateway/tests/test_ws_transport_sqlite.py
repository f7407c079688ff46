import os
import tempfile
import unittest

from aiohttp.test_utils import TestClient, TestServer

from chat_relay.auth import StaticTokenVerifier
from chat_relay.config import RelayConfig
from chat_relay.messages import SQLiteMessageStore
from chat_relay.ws_transport import RUNTIME_KEY, create_app
from tests.ws_receive_util import recv_event

TOKENS = {"tA": "A", "tB": "B"}


class WsTransportSQLiteTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "relay.db")
        self._servers: list[tuple[TestServer, TestClient]] = []

    async def asyncTearDown(self):
        for server, client in self._servers:
            await client.close()
            await server.close()
        self.tmpdir.cleanup()

    async def _start_runtime(self):
        app = create_app(
            RelayConfig(ping_interval_s=3600, db_path=self.db_path),
            verifier=StaticTokenVerifier(TOKENS),
        )
        server = TestServer(app)
        await server.start_server()
        client = TestClient(server)
        await client.start_server()
        self._servers.append((server, client))
        return client, app[RUNTIME_KEY]

    async def _stop_runtime(self, client: TestClient) -> None:
        for index, (server, registered) in enumerate(self._servers):
            if registered is client:
                await client.close()
                await server.close()
                del self._servers[index]
                return

    async def _join(self, client: TestClient, user_id: str):
        ws = await client.ws_connect("/v1/ws")
        await ws.send_json({"v": 1, "t": "join", "body": {"token": f"t{user_id}", "userId": user_id}})
        await recv_event(ws, "joined")
        return ws

    async def test_offline_message_survives_restart(self):
        client, runtime = await self._start_runtime()
        self.assertIsInstance(runtime.store, SQLiteMessageStore)
        runtime.users.register("A", "alice")
        runtime.users.register("B", "bob")

        ws_a = await self._join(client, "A")
        await ws_a.send_json(
            {
                "v": 1,
                "t": "sendMessage",
                "id": "s1",
                "body": {"senderId": "A", "receiverId": "B", "text": "see you later", "token": "tA"},
            }
        )
        sent = await recv_event(ws_a, "messageSent")
        await ws_a.close()
        await self._stop_runtime(client)

        data = sent["body"]["data"]
        self.assertEqual(data["sender"], {"id": "A", "username": "alice"})
        self.assertEqual(data["receiver"], {"id": "B", "username": "bob"})

        _, restarted = await self._start_runtime()
        stored = restarted.store.find_between("B", "A")
        self.assertEqual([m.msg_id for m in stored], [data["id"]])
        self.assertEqual(stored[0].text, "see you later")
        self.assertEqual(stored[0].ts_ms, data["timestamp"])
        self.assertEqual(restarted.users.public_profile("B"), {"id": "B", "username": "bob"})
        self.assertEqual(restarted.presence.list_online(), set())


if __name__ == "__main__":
    unittest.main()
