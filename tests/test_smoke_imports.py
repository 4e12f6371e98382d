"""Smoke tests for importability and basic public API."""


def test_import_xseq():
    """Import the top-level package."""
    import xseq  # noqa: F401


def test_public_api_symbols():
    """Expose core public symbols at package level."""
    import xseq

    for name in ["fit_expression_distributions", "reduce_network",
                 "initialize_prior", "build_model", "learn_parameters",
                 "format_posteriors", "XseqModel", "Constraints"]:
        assert hasattr(xseq, name)


def test_can_import_core_modules():
    """Import core modules without side effects raising."""
    from xseq import constants  # noqa: F401
    from xseq import models  # noqa: F401
    from xseq import em  # noqa: F401


def test_cli_version(monkeypatch, capsys):
    """Dispatch the version command."""
    import xseq
    from xseq.__main__ import main

    monkeypatch.setattr("sys.argv", ["xseq", "version"])
    assert main() == 0
    assert capsys.readouterr().out.strip() == xseq.__version__


def test_learner_function_and_module_are_distinct():
    """The re-exported learner is the function, its module stays reachable."""
    import types

    import xseq
    from xseq import em

    assert callable(xseq.learn_parameters)
    assert not isinstance(xseq.learn_parameters, types.ModuleType)
    assert xseq.learn_parameters is em.learn_parameters
