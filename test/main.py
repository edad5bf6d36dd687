# python
"""
Command-line entry point tests (python -m qel).

Conventions
- Test method names follow CamelCase per project convention.
- QEL_* variables are removed from the environment for every test.
"""

import io
import os
import re
import unittest
from unittest import TestCase, mock

from qel.__main__ import main
from qel.completion import script
from qel.faults import ParserExit


class TestMain(TestCase):
    """Behavioral tests for main()."""

    def setUp(self):
        patcher = mock.patch.dict(os.environ)
        patcher.start()
        self.addCleanup(patcher.stop)
        for name in list(os.environ):
            if name.startswith("QEL_") or name in ("COMP_LINE", "COMP_POINT", "DESCRIBE_USAGE"):
                del os.environ[name]
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()
        for name, stream in (("sys.stdout", self.stdout), ("sys.stderr", self.stderr)):
            patcher = mock.patch(name, stream)
            patcher.start()
            self.addCleanup(patcher.stop)

    def testBashScript(self):
        self.assertEqual(main(["--no-randomize-function-name", "mycli"]), 0)
        self.assertEqual(self.stdout.getvalue(), script("bash", ["mycli"]))

    def testZshSetupOnly(self):
        code = main(["-s", "zsh", "--function-name", "_x", "--no-randomize-function-name", "--no-function", "a"])
        self.assertEqual(code, 0)
        self.assertEqual(self.stdout.getvalue(), "#compdef a\n\ncompdef _x a\n")

    def testRandomizedFunctionName(self):
        self.assertEqual(main(["--no-function", "mycli"]), 0)
        self.assertRegex(self.stdout.getvalue(), re.compile(r"^complete -F _qel_completion_\d+ mycli\n$"))

    def testOptionsFromEnvironment(self):
        os.environ["QEL_COMPLETION_SHELL"] = "zsh"
        os.environ["QEL_COMPLETION_RANDOMIZE_FUNCTION_NAME"] = "false"
        os.environ["QEL_COMPLETION_ENABLE_FUNCTION"] = "false"
        self.assertEqual(main(["a"]), 0)
        self.assertEqual(self.stdout.getvalue(), "#compdef a\n\ncompdef _qel_completion a\n")

    def testCommandIsRequired(self):
        self.assertEqual(main([]), 2)
        self.assertIn("At least one command should be given", self.stderr.getvalue())
        self.assertEqual(self.stdout.getvalue(), "")

    def testFunctionOrSetupIsRequired(self):
        self.assertEqual(main(["--no-function", "--no-setup", "a"]), 2)
        self.assertIn("At least one of (--function, --setup) should be set", self.stderr.getvalue())

    def testInvalidFunctionName(self):
        with self.assertRaises(ParserExit) as context:
            main(["--function-name", "completion", "a"])
        self.assertEqual(context.exception.code, 2)
        self.assertIn("InvalidOptionValue", self.stderr.getvalue())

    def testUnsupportedShell(self):
        with self.assertRaises(ParserExit) as context:
            main(["--shell", "fish", "a"])
        self.assertEqual(context.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
