import unittest

from portfolio_backend.saga import Saga


class SagaTests(unittest.TestCase):
    def test_runs_steps_in_order_and_exposes_results(self):
        calls = []
        context = (
            Saga("ok")
            .step("first", lambda ctx: calls.append("first") or 1)
            .step("second", lambda ctx: calls.append("second") or ctx["first"] + 1)
            .after_commit("cleanup", lambda ctx: calls.append("cleanup"))
            .run()
        )
        self.assertEqual(calls, ["first", "second", "cleanup"])
        self.assertEqual(context["second"], 2)

    def test_failure_compensates_completed_steps_in_reverse(self):
        calls = []

        def fail(ctx):
            raise RuntimeError("boom")

        saga = (
            Saga("failing")
            .step("a", lambda ctx: "a", compensation=lambda ctx: calls.append("undo a"))
            .step("b", lambda ctx: "b", compensation=lambda ctx: calls.append("undo b"))
            .step("c", fail, compensation=lambda ctx: calls.append("undo c"))
            .step("d", lambda ctx: calls.append("d"))
            .after_commit("cleanup", lambda ctx: calls.append("cleanup"))
        )
        with self.assertRaises(RuntimeError):
            saga.run()
        self.assertEqual(calls, ["undo b", "undo a"])

    def test_compensation_failure_keeps_original_error(self):
        def undo(ctx):
            raise ConnectionError("storage down")

        def fail(ctx):
            raise ValueError("write failed")

        saga = Saga("failing").step("a", lambda ctx: 1, compensation=undo).step("b", fail)
        with self.assertRaisesRegex(ValueError, "write failed"):
            saga.run()

    def test_after_commit_failure_is_absorbed(self):
        def cleanup(ctx):
            raise ConnectionError("storage down")

        context = Saga("ok").step("a", lambda ctx: "done").after_commit("cleanup", cleanup).run()
        self.assertEqual(context["a"], "done")
        self.assertNotIn("cleanup", context)


if __name__ == "__main__":
    unittest.main()
