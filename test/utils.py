"""
Tests for the internal helpers.

This module verifies semantic guarantees of qel.utils:
- The Unset sentinel: singleton identity, falsy semantics, representation, finality.
- coalesce(): only Unset is replaced.
- mirror(): read-only copies of private state.
"""
import copy
import unittest
from threading import Thread, Lock
from unittest import TestCase

from qel.utils import Unset, UnsetType, coalesce, mirror


class TestUnset(TestCase):
    """
    Test suite for the `Unset` singleton.
    """

    def testSingleton(self) -> None:
        """
        The constructor returns the same object reference on every call.
        """
        self.assertIs(UnsetType(), Unset)

    def testFalsy(self) -> None:
        """
        The sentinel is falsy but not equal to other falsy values.
        """
        self.assertFalse(bool(Unset))
        self.assertNotEqual(Unset, None)
        self.assertNotEqual(Unset, False)  # noqa: E712

    def testRepr(self) -> None:
        self.assertEqual(repr(Unset), "Unset")

    def testUnion(self) -> None:
        """
        Unset takes part in PEP 604 unions used by isinstance checks.
        """
        self.assertIsInstance(Unset, str | Unset)
        self.assertIsInstance("name", str | Unset)
        self.assertNotIsInstance(None, str | Unset)

    def testCopyPreservesSingleton(self) -> None:
        self.assertIs(copy.copy(Unset), Unset)
        self.assertIs(copy.deepcopy(Unset), Unset)

    def testThreadSafetySingleton(self) -> None:
        """
        Concurrent constructions return the same instance.
        """
        results: list[UnsetType] = []
        lock: Lock = Lock()

        def worker():
            instance = UnsetType()
            with lock:
                results.append(instance)

        threads: list[Thread] = [Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 16)
        for instance in results:
            self.assertIs(instance, Unset)

    def testFinalClass(self) -> None:
        with self.assertRaises(TypeError):
            type("UnsetType", (UnsetType,), {})


class TestCoalesce(TestCase):
    """
    Test suite for coalesce().
    """

    def testReplacesUnset(self) -> None:
        self.assertEqual(coalesce(Unset, "fallback"), "fallback")
        self.assertIsNone(coalesce(Unset))

    def testKeepsFalsyValues(self) -> None:
        """
        None, 0, "" and [] are legitimate values and are returned unchanged.
        """
        for value in (None, 0, "", []):
            self.assertIs(coalesce(value, "fallback"), value)


class TestMirror(TestCase):
    """
    Test suite for mirror().
    """

    class Holder:
        items = mirror("items")
        mapping = mirror("mapping")
        label = mirror("label")

        def __init__(self):
            self._items = ("a", ["b"])
            self._mapping = {"key": ["value"]}
            self._label = "name"

    def testContainersAreCopied(self) -> None:
        """
        Reads return fresh copies: mutating them leaves the private state untouched.
        """
        holder = self.Holder()
        items = holder.items
        items[1].append("c")
        self.assertEqual(items, ["a", ["b", "c"]])
        self.assertEqual(holder._items, ("a", ["b"]))

        mapping = holder.mapping
        mapping["key"].append("other")
        self.assertEqual(holder._mapping, {"key": ["value"]})

    def testScalarsAreReturnedAsIs(self) -> None:
        self.assertEqual(self.Holder().label, "name")

    def testReadOnly(self) -> None:
        with self.assertRaises(AttributeError):
            self.Holder().label = "other"

    def testPropertyName(self) -> None:
        self.assertEqual(self.Holder.label.fget.__name__, "label")

    def testNameMustBeString(self) -> None:
        with self.assertRaises(TypeError):
            mirror(42)


if __name__ == '__main__':
    unittest.main()
