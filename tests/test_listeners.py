"""Tests for listener registry."""

import logging

import pytest

from netsmart.listeners import ListenerRegistry

from conftest import settle


class TestListenerRegistry:
    def test_notify_in_registration_order(self):
        registry = ListenerRegistry("test")
        seen = []
        registry.add(lambda v: seen.append(("a", v)))
        registry.add(lambda v: seen.append(("b", v)))
        registry.notify(1)
        assert seen == [("a", 1), ("b", 1)]

    def test_unsubscribe(self):
        registry = ListenerRegistry("test")
        seen = []
        unsubscribe = registry.add(seen.append)
        unsubscribe()
        unsubscribe()
        registry.notify(1)
        assert seen == []
        assert len(registry) == 0

    def test_failing_listener_isolated(self, caplog):
        registry = ListenerRegistry("test")
        seen = []

        def broken(value):
            raise RuntimeError("listener bug")

        registry.add(broken)
        registry.add(seen.append)
        with caplog.at_level(logging.ERROR, logger="netsmart"):
            registry.notify("x")
        assert seen == ["x"]
        assert "listener bug" in caplog.text

    def test_listener_may_unsubscribe_during_notify(self):
        registry = ListenerRegistry("test")
        seen = []
        holder = {}

        def once(value):
            seen.append(value)
            holder["unsub"]()

        holder["unsub"] = registry.add(once)
        registry.notify(1)
        registry.notify(2)
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_coroutine_listener_scheduled(self):
        registry = ListenerRegistry("test")
        seen = []

        async def listener(value):
            seen.append(value)

        registry.add(listener)
        registry.notify(7)
        await settle()
        assert seen == [7]

    @pytest.mark.asyncio
    async def test_coroutine_listener_failure_logged(self, caplog):
        registry = ListenerRegistry("test")

        async def listener(value):
            raise RuntimeError("async bug")

        registry.add(listener)
        with caplog.at_level(logging.ERROR, logger="netsmart"):
            registry.notify(1)
            await settle()
        assert "async bug" in caplog.text
