# Overview: Pytest coverage for the bootstrap and fiscal CLI commands.

from vitana.models import Business, FiscalConfig, Product

MANUAL_KEY = "52060433009911002506550120000007800267301615"


class TestFiscalCommands:
    def test_verify_key(self, app):
        result = app.test_cli_runner().invoke(args=["fiscal", "verify-key", MANUAL_KEY])
        assert result.exit_code == 0
        assert "PASS" in result.output
        assert "26730161" in result.output

    def test_verify_key_bad_digit(self, app):
        result = app.test_cli_runner().invoke(args=["fiscal", "verify-key", MANUAL_KEY[:43] + "0"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_verify_key_garbage(self, app):
        result = app.test_cli_runner().invoke(args=["fiscal", "verify-key", "123"])
        assert result.exit_code != 0

    def test_show_config(self, app, business_a, fiscal_config):
        result = app.test_cli_runner().invoke(args=["fiscal", "show-config", "--business-id", business_a.id])
        assert result.exit_code == 0
        assert "11.222.333/0001-81" in result.output
        assert "Proximo numero   1" in result.output


class TestSystemCommands:
    def test_seed_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["system", "seed", "--name", "Loja Teste"]).exit_code == 0
        assert runner.invoke(args=["system", "seed", "--name", "Loja Teste"]).exit_code == 0

        business = db_session.query(Business).filter_by(name="Loja Teste").one()
        assert db_session.query(Product).filter_by(business_id=business.id).count() == 3
        assert db_session.get(FiscalConfig, business.id).proximo_numero == 1
