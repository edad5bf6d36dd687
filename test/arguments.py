# python
"""
Arguments module behavioral tests (Parser, Namespace, parse shortcuts).

Scope
- Compile argument mappings: alias chains, configuration faults.
- Walk argument vectors: clusters, "--", inline values, negation, counting, multi-values.
- Surface faults: raised with usage=False, rendered with ParserExit(2) otherwise.
- Short-circuits: completion, describe usage, help and version.

Conventions
- Test method names follow CamelCase per project convention.
- Every parser receives an explicit argv; the environment is patched where it matters.
"""

import asyncio
import io
import json
import os
import unittest
from unittest import TestCase, mock

from qel import Namespace, Parser, parse, parser, flag, number, string
from qel.faults import (
    ConfigEmptyKeyError,
    ConfigInvalidAliasError,
    ConfigInvalidTypeError,
    ConfigNoNameError,
    ConfigNonOptionKeyError,
    ConfigShortOptionTooLongError,
    InvalidOptionValueError,
    MissingRequiredOptionError,
    MissingRequiredValueError,
    MissingValueForLongOptionError,
    ParserExit,
    UnknownOptionError,
)


def run(spec, argv, **options):
    return parse(spec, argv=argv, usage=False, **options)


class TestScenarios(TestCase):
    """End-to-end parses of small argument mappings."""

    def testRequiredEmailThroughAlias(self):
        spec = {"--email": string().format("email").required(), "-e": "--email"}
        self.assertEqual(run(spec, ["-e", "a@b.co"]), {"--email": "a@b.co", "_": []})

    def testCountingMultiValuedFlag(self):
        result = run({"--count": [flag().count()]}, ["--count", "--count", "--count"])
        self.assertEqual(result, {"--count": 3, "_": []})

    def testEnumRejectsUnknownValue(self):
        with self.assertRaisesRegex(InvalidOptionValueError, r"\[date, uptime\]"):
            run({"--cmd": string().enum(["date", "uptime"])}, ["--cmd=unknown"])


class TestCompilation(TestCase):
    """Configuration faults raised while compiling an argument mapping."""

    def testEmptyKey(self):
        with self.assertRaises(ConfigEmptyKeyError):
            Parser({"": string()}, argv=[], parse=False)

    def testNonOptionKey(self):
        with self.assertRaises(ConfigNonOptionKeyError):
            Parser({"name": string()}, argv=[], parse=False)

    def testNoName(self):
        with self.assertRaises(ConfigNoNameError):
            Parser({"-": string()}, argv=[], parse=False)

    def testInvalidType(self):
        with self.assertRaises(ConfigInvalidTypeError):
            Parser({"--name": 42}, argv=[], parse=False)
        with self.assertRaises(ConfigInvalidTypeError):
            Parser({"--name": [string(), string()]}, argv=[], parse=False)

    def testShortOptionTooLong(self):
        with self.assertRaises(ConfigShortOptionTooLongError):
            Parser({"-ab": string()}, argv=[], parse=False)

    def testAliasCycle(self):
        with self.assertRaisesRegex(ConfigInvalidAliasError, "cycle"):
            Parser({"--name": string(), "-a": "-b", "-b": "-a"}, argv=[], parse=False)

    def testDanglingAlias(self):
        with self.assertRaises(ConfigInvalidAliasError):
            Parser({"-a": "--missing"}, argv=[], parse=False)

    def testCompilationFaultsAreRaisedEvenWithUsage(self):
        with self.assertRaises(ConfigEmptyKeyError):
            Parser({"": string()}, argv=[])

    def testInvalidOptions(self):
        with self.assertRaises(TypeError):
            Parser(["--name"], argv=[], parse=False)
        with self.assertRaises(TypeError):
            Parser({}, argv=[], parse=False, prefix="")
        with self.assertRaises(TypeError):
            Parser({}, argv=[], parse=False, after="nope")


class TestWalk(TestCase):
    """Behavioral tests for the argument vector walk."""

    def testAliasChainsAreTransparent(self):
        spec = {"--name": string(), "-n": "--name", "--nm": "-n"}
        for argv in (["--name", "x"], ["-n", "x"], ["--nm", "x"], ["--nm=x"]):
            self.assertEqual(run(spec, argv), {"--name": "x", "_": []})

    def testPositionalsAreCollected(self):
        self.assertEqual(run({"--name": string()}, ["a", "--name", "x", "b"]), {"--name": "x", "_": ["a", "b"]})

    def testDoubleDashEndsOptions(self):
        result = run({"-a": flag()}, ["--", "-a", "b"])
        self.assertEqual(result["_"], ["-a", "b"])
        self.assertIs(result["-a"], False)

    def testShortCluster(self):
        spec = {"-a": flag(), "-b": flag(), "-c": string()}
        self.assertEqual(run(spec, ["-abc", "val"]), {"-a": True, "-b": True, "-c": "val", "_": []})

    def testValueOptionInsideCluster(self):
        spec = {"-a": flag(), "-c": string()}
        with self.assertRaises(MissingRequiredValueError):
            run(spec, ["-ca"])

    def testMissingValue(self):
        spec = {"--name": string(), "--other": flag()}
        with self.assertRaises(MissingValueForLongOptionError):
            run(spec, ["--name"])
        with self.assertRaises(MissingValueForLongOptionError):
            run(spec, ["--name", "--other"])

    def testMissingValueThroughAlias(self):
        with self.assertRaisesRegex(MissingValueForLongOptionError, r"-n \(alias for --name\)"):
            run({"--name": string(), "-n": "--name"}, ["-n"])

    def testNegativeNumbers(self):
        self.assertEqual(run({"--delta": number()}, ["--delta", "-5"])["--delta"], -5)
        self.assertEqual(run({"--delta": number()}, ["--delta", "-.5"])["--delta"], -0.5)
        with self.assertRaises(MissingValueForLongOptionError):
            run({"--name": string()}, ["--name", "-5"])

    def testUnknownOption(self):
        with self.assertRaisesRegex(UnknownOptionError, "--bad"):
            run({}, ["--bad"])

    def testPermissiveKeepsUnknownOptions(self):
        result = run({"-a": flag()}, ["--bad", "-ax"], permissive=True)
        self.assertEqual(result["_"], ["--bad", "-x"])
        self.assertIs(result["-a"], True)

    def testStopAtPositional(self):
        result = run({"-a": flag()}, ["pos", "-a", "--bad"], stop_at_positional=True)
        self.assertEqual(result["_"], ["pos", "-a", "--bad"])
        self.assertIs(result["-a"], False)

    def testMultiValuedKeepsOrder(self):
        result = run({"--tag": [string()], "-t": "--tag"}, ["--tag", "a", "-t", "b", "--tag=c"])
        self.assertEqual(result["--tag"], ["a", "b", "c"])

    def testAbsentMultiValued(self):
        self.assertNotIn("--tag", run({"--tag": [string()]}, []))
        self.assertEqual(run({"--tag": [string("x")]}, [])["--tag"], ["x"])

    def testLastValueWins(self):
        self.assertEqual(run({"--name": string()}, ["--name", "a", "--name", "b"])["--name"], "b")

    def testAbsentOptionalIsLeftOut(self):
        self.assertEqual(run({"--name": string()}, []), {"_": []})


class TestFlags(TestCase):
    """Behavioral tests for flags, negation and counting."""

    def testNegationSymmetry(self):
        spec = {"--flag": flag()}
        self.assertIs(run(spec, ["--flag", "--no-flag"])["--flag"], False)
        self.assertIs(run(spec, ["--no-flag", "--flag"])["--flag"], True)

    def testNegationThroughAlias(self):
        spec = {"--flag": flag(), "--switch": "--flag"}
        self.assertIs(run(spec, ["--no-switch"])["--flag"], False)

    def testInlineFlagValues(self):
        spec = {"--flag": flag(True)}
        self.assertIs(run(spec, ["--flag=false"])["--flag"], False)
        self.assertIs(run(spec, ["--no-flag=false"])["--flag"], True)
        with self.assertRaises(InvalidOptionValueError):
            run(spec, ["--flag=maybe"])

    def testNegationCanBeDisallowed(self):
        with self.assertRaises(UnknownOptionError):
            run({"--flag": flag().allow_negation(False)}, ["--no-flag"])

    def testDeclaredNoOptionWins(self):
        spec = {"--cache": flag(), "--no-cache": flag()}
        result = run(spec, ["--no-cache"])
        self.assertIs(result["--no-cache"], True)
        self.assertIs(result["--cache"], False)

    def testFlagDefaults(self):
        self.assertIs(run({"--flag": flag()}, [])["--flag"], False)
        self.assertIs(run({"--flag": flag(True)}, [])["--flag"], True)

    def testCountIgnoresNegations(self):
        spec = {"--verbose": flag().count(), "-v": "--verbose"}
        self.assertEqual(run(spec, ["-vvv", "--no-verbose", "--verbose"])["--verbose"], 4)
        self.assertEqual(run(spec, [])["--verbose"], 0)

    def testCountIsMapped(self):
        spec = {"-v": flag().count().map(lambda count: ["warning", "info", "debug"][min(count, 2)])}
        self.assertEqual(run(spec, ["-vv"])["-v"], "debug")
        self.assertEqual(run(spec, [])["-v"], "warning")

    def testCountMapErrorsAreInvalidValues(self):
        def cap(count):
            if count > 2:
                raise ValueError("too verbose")
            return count

        spec = {"--verbose": flag().count().map(cap), "-v": "--verbose"}
        with self.assertRaisesRegex(InvalidOptionValueError, r"--verbose 3 \(too verbose\)"):
            run(spec, ["-vvv"])
        self.assertEqual(run(spec, ["-vv"])["--verbose"], 2)

    def testCountMapErrorsRenderUsage(self):
        def cap(count):
            raise ValueError("too verbose")

        stderr = io.StringIO()
        with mock.patch("sys.stderr", stderr):
            with self.assertRaises(ParserExit) as context:
                Parser({"-v": flag().count().map(cap)}, argv=["-v"], script_name="tool")
        self.assertEqual(context.exception.code, 2)
        self.assertIn("InvalidOptionValue", stderr.getvalue())


class TestResolution(TestCase):
    """Behavioral tests for environment, defaults and required arguments."""

    def testEnvironmentVariable(self):
        spec = {"--token": string().env("QEL_TEST_TOKEN")}
        with mock.patch.dict(os.environ, {"QEL_TEST_TOKEN": "secret"}):
            self.assertEqual(run(spec, [])["--token"], "secret")
            self.assertEqual(run(spec, ["--token", "given"])["--token"], "given")

    def testEnvironmentFlag(self):
        spec = {"--flag": flag().env("QEL_TEST_FLAG")}
        with mock.patch.dict(os.environ, {"QEL_TEST_FLAG": "true"}):
            self.assertIs(run(spec, [])["--flag"], True)

    def testRequiredMissing(self):
        with self.assertRaisesRegex(MissingRequiredOptionError, "--name"):
            run({"--name": string().required()}, [])

    def testRequiredSatisfiedByDefault(self):
        self.assertEqual(run({"--name": string("x").required()}, [])["--name"], "x")


class TestNamespace(TestCase):
    """Behavioral tests for Namespace and Parser lookups."""

    def testAliasLookups(self):
        result = Namespace({"--name": "x"}, aliases={"-n": "--name"})
        self.assertTrue(result.has("-n"))
        self.assertIn("-n", result)
        self.assertEqual(result["-n"], "x")
        self.assertEqual(result.get("-n"), "x")
        self.assertIsNone(result.get("-z"))
        self.assertEqual(result.get("-z", 1), 1)
        self.assertEqual(result["_"], [])

    def testParserLookups(self):
        instance = parser({"--name": string(), "-n": "--name"}, argv=["-n", "x"], usage=False)
        self.assertTrue(instance.has("--name"))
        self.assertIn("-n", instance)
        self.assertEqual(instance["-n"], "x")
        self.assertEqual(instance.get("--name"), "x")
        self.assertEqual(instance.result["_"], [])

    def testResultBeforeParse(self):
        instance = Parser({}, argv=[], parse=False)
        with self.assertRaises(RuntimeError):
            instance.result

    def testParseAnotherVector(self):
        instance = Parser({"--name": string()}, argv=[], parse=False, usage=False)
        self.assertEqual(instance.parse(["--name", "y"])["--name"], "y")
        self.assertEqual(instance.result["--name"], "y")

    def testShortcutIgnoresParseOption(self):
        self.assertEqual(parse({}, argv=["a"], parse=False), {"_": ["a"]})


class TestFaults(TestCase):
    """Behavioral tests for fault rendering."""

    def testUsageRendersAndExits(self):
        stderr = io.StringIO()
        with mock.patch("sys.stderr", stderr):
            with self.assertRaises(ParserExit) as context:
                Parser({"--name": string()}, argv=["--bad"], script_name="tool")
        self.assertEqual(context.exception.code, 2)
        output = stderr.getvalue()
        self.assertIn("UnknownOption", output)
        self.assertIn("--bad", output)
        self.assertIn("Usage: tool [ARGUMENTS]", output)

    def testUsageDisabledRaises(self):
        with self.assertRaises(UnknownOptionError):
            Parser({}, argv=["--bad"], usage=False)


class TestAfter(TestCase):
    """Behavioral tests for the after hook."""

    def testSyncHook(self):
        received = []
        Parser({"--name": string()}, argv=["--name", "x"], after=received.append)
        self.assertEqual(received, [{"--name": "x", "_": []}])

    def testAsyncHookWithoutLoop(self):
        received = []

        async def hook(result):
            await asyncio.sleep(0)
            received.append(result)

        Parser({}, argv=["a"], after=hook)
        self.assertEqual(received, [{"_": ["a"]}])

    def testHookIsNotCalledOnFault(self):
        received = []
        with self.assertRaises(UnknownOptionError):
            Parser({}, argv=["--bad"], usage=False, after=received.append)
        self.assertEqual(received, [])


class TestShortCircuits(TestCase):
    """Behavioral tests for help, version, describe usage and completion."""

    def setUp(self):
        patcher = mock.patch.dict(os.environ)
        patcher.start()
        self.addCleanup(patcher.stop)
        for name in ("COMP_LINE", "COMP_POINT", "DESCRIBE_USAGE", "QEL_DESCRIBE_USAGE", "QEL_SCRIPT_NAME"):
            os.environ.pop(name, None)

    def capture(self, stream, spec, argv, **options):
        buffer = io.StringIO()
        with mock.patch(f"sys.{stream}", buffer):
            with self.assertRaises(ParserExit) as context:
                Parser(spec, argv=argv, **options)
        return context.exception.code, buffer.getvalue()

    def testHelp(self):
        code, output = self.capture(
            "stderr", {"--name": string().description("user name")}, ["x", "-h"],
            script_name="tool", description="Tool description.", examples=["--name joe"],
        )
        self.assertEqual(code, 0)
        self.assertIn("Tool description.", output)
        self.assertIn("Usage: tool [ARGUMENTS]", output)
        self.assertIn("user name", output)
        self.assertIn("EXAMPLES:", output)
        self.assertIn("tool --name joe", output)

    def testHelpAfterDoubleDashIsPositional(self):
        self.assertEqual(run({}, ["--", "--help"])["_"], ["--help"])

    def testDeclaredHelpIsNotIntercepted(self):
        self.assertIs(run({"--help": flag()}, ["--help"])["--help"], True)

    def testVersion(self):
        code, output = self.capture("stdout", {}, ["--version"], version="1.2.3")
        self.assertEqual(code, 0)
        self.assertEqual(output, "1.2.3\n")

    def testVersionWithoutConfiguredVersion(self):
        with self.assertRaises(UnknownOptionError):
            run({}, ["--version"])

    def testDescribeUsage(self):
        os.environ["QEL_DESCRIBE_USAGE"] = "1"
        spec = {"--name": string("joe").env("NAME"), "-n": "--name", "--tag": [string()]}
        code, output = self.capture("stdout", spec, ["--bad"])
        self.assertEqual(code, 0)
        described = json.loads(output)
        self.assertEqual([item["name"] for item in described], ["--name", "--tag"])
        self.assertEqual(described[0]["default"], "joe")
        self.assertEqual(described[0]["aliases"], ["-n"])
        self.assertEqual(described[0]["env"], "NAME")
        self.assertIs(described[1]["allow_many"], True)

    def testDescribeUsageWithCustomPrefix(self):
        os.environ["TOOL_DESCRIBE_USAGE"] = "1"
        code, output = self.capture("stdout", {"--name": string()}, [], prefix="TOOL")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)[0]["name"], "--name")

    def testCompletion(self):
        os.environ["COMP_LINE"] = "prog --sh"
        os.environ["COMP_POINT"] = "9"
        code, output = self.capture("stdout", {"--shell": string(), "--verbose": flag()}, [])
        self.assertEqual(code, 0)
        self.assertEqual(output, "--shell\n")

    def testScriptNameFromEnvironment(self):
        os.environ["QEL_SCRIPT_NAME"] = "from-env"
        instance = Parser({}, argv=[], parse=False)
        self.assertEqual(instance.script_name, "from-env")
        self.assertTrue(instance.get_usage().startswith("Usage: from-env [ARGUMENTS]"))


if __name__ == "__main__":
    unittest.main()
