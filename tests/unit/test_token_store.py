from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from push_pipeline.jobs.models import DeviceToken
from push_pipeline.notifications.contracts import TokenStoreError
from push_pipeline.notifications.token_store import InMemoryTokenStore, PostgresTokenStore

TOKEN = "fcm-token-alpha-0000000000000001"


def _session_factory(session):
  factory = MagicMock()
  factory.return_value.__aenter__ = AsyncMock(return_value=session)
  factory.return_value.__aexit__ = AsyncMock(return_value=False)
  return factory


@pytest.mark.anyio
async def test_postgres_lookup_maps_rows():
  session = AsyncMock()
  result = MagicMock()
  result.scalars.return_value.all.return_value = [MagicMock(token=TOKEN, user_id="user-1", device_type="ios")]
  session.execute.return_value = result

  tokens = await PostgresTokenStore(session_factory=_session_factory(session)).list_tokens_for_user("user-1")

  assert tokens == [DeviceToken(token=TOKEN, user_id="user-1", device_type="ios")]


@pytest.mark.anyio
@pytest.mark.parametrize("error", [OperationalError("SELECT", {}, Exception("connection refused")), ConnectionRefusedError(111, "Connect call failed")])
async def test_postgres_errors_are_wrapped(error):
  session = AsyncMock()
  session.execute.side_effect = error
  store = PostgresTokenStore(session_factory=_session_factory(session))

  with pytest.raises(TokenStoreError):
    await store.list_tokens_for_user("user-1")
  with pytest.raises(TokenStoreError):
    await store.delete_tokens([TOKEN])


@pytest.mark.anyio
async def test_postgres_delete_skips_empty_batches():
  session = AsyncMock()
  await PostgresTokenStore(session_factory=_session_factory(session)).delete_tokens([])
  session.execute.assert_not_called()


@pytest.mark.anyio
async def test_register_moves_token_to_new_owner():
  store = InMemoryTokenStore()
  await store.register_device_token(user_id="user-1", token=TOKEN, device_type="Android")
  await store.register_device_token(user_id="user-2", token=TOKEN, device_type="ios")

  assert await store.list_tokens_for_user("user-1") == []
  assert await store.list_tokens_for_user("user-2") == [DeviceToken(token=TOKEN, user_id="user-2", device_type="ios")]


@pytest.mark.anyio
async def test_register_rejects_unknown_device_type():
  with pytest.raises(ValueError):
    await InMemoryTokenStore().register_device_token(user_id="user-1", token=TOKEN, device_type="watch")
