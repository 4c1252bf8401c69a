"""Tests for the sshd_config directive model."""

from conftest import UBUNTU_SSHD_CONFIG

from ubuntu_hardening.sshd_config import SshdConfig, apply_sshd_settings


def active_lines(config: SshdConfig, keyword: str):
    return [
        line
        for line in config.lines
        if line.split() and line.split()[0].split("=")[0].lower() == keyword.lower()
    ]


class TestSshdConfigGet:
    def test_commented_defaults_are_not_values(self):
        config = SshdConfig.parse(UBUNTU_SSHD_CONFIG)
        assert config.get("PermitRootLogin") is None
        assert config.get("PasswordAuthentication") is None

    def test_first_value_wins_and_keywords_ignore_case(self):
        config = SshdConfig.parse("usepam yes\nUsePAM no\n")
        assert config.get("UsePAM") == "yes"

    def test_equals_separator(self):
        config = SshdConfig.parse("PermitRootLogin=prohibit-password\n")
        assert config.get("permitrootlogin") == "prohibit-password"

    def test_match_block_values_are_ignored(self):
        config = SshdConfig.parse("Match User backup\n    PasswordAuthentication yes\n")
        assert config.get("PasswordAuthentication") is None


class TestSshdConfigSet:
    def test_replaces_commented_default(self):
        config = SshdConfig.parse("#PermitRootLogin yes\nUsePAM yes\n")
        assert config.set("PermitRootLogin", "no") is True
        assert config.lines == ["PermitRootLogin no", "UsePAM yes"]

    def test_setting_twice_yields_a_single_line(self):
        config = SshdConfig.parse("#PermitRootLogin yes\n")
        config.set("PermitRootLogin", "no")
        first = config.render()

        assert config.set("PermitRootLogin", "no") is False
        assert config.render() == first
        assert first.count("PermitRootLogin no") == 1

    def test_reparsed_output_is_stable(self):
        config = SshdConfig.parse(UBUNTU_SSHD_CONFIG)
        config.set("PasswordAuthentication", "no")
        again = SshdConfig.parse(config.render())
        assert again.set("PasswordAuthentication", "no") is False

    def test_rewrites_explicit_setting_and_drops_duplicates(self):
        config = SshdConfig.parse(
            "PasswordAuthentication yes\nUsePAM yes\npasswordauthentication=yes\n"
        )
        config.set("PasswordAuthentication", "no")
        assert config.lines == ["PasswordAuthentication no", "UsePAM yes"]

    def test_explicit_setting_preferred_over_comment(self):
        config = SshdConfig.parse("#PermitRootLogin prohibit-password\nPermitRootLogin yes\n")
        config.set("PermitRootLogin", "no")
        assert config.lines == ["#PermitRootLogin prohibit-password", "PermitRootLogin no"]

    def test_appends_when_absent(self):
        config = SshdConfig.parse("UsePAM yes\n")
        config.set("PubkeyAuthentication", "yes")
        assert config.lines[-1] == "PubkeyAuthentication yes"

    def test_inserts_before_match_block(self):
        config = SshdConfig.parse(
            "UsePAM yes\nMatch User backup\n    PermitRootLogin yes\n"
        )
        config.set("PermitRootLogin", "no")
        assert config.lines == [
            "UsePAM yes",
            "PermitRootLogin no",
            "Match User backup",
            "    PermitRootLogin yes",
        ]

    def test_untouched_lines_are_preserved(self):
        config = SshdConfig.parse(UBUNTU_SSHD_CONFIG)
        config.set("PermitRootLogin", "no")

        original = UBUNTU_SSHD_CONFIG.splitlines()
        rendered = config.render().splitlines()
        assert len(original) == len(rendered)
        changed = [(a, b) for a, b in zip(original, rendered) if a != b]
        assert changed == [("#PermitRootLogin prohibit-password", "PermitRootLogin no")]
        assert "Subsystem\tsftp\t/usr/lib/openssh/sftp-server" in rendered

    def test_ubuntu_default_hardened(self):
        config = SshdConfig.parse(UBUNTU_SSHD_CONFIG)
        config.set("PasswordAuthentication", "no")
        config.set("PubkeyAuthentication", "yes")
        config.set("PermitRootLogin", "no")

        assert config.get("PasswordAuthentication") == "no"
        assert config.get("PubkeyAuthentication") == "yes"
        assert config.get("PermitRootLogin") == "no"
        assert len(active_lines(config, "PasswordAuthentication")) == 1


class TestApplySshdSettings:
    def test_updates_main_file_and_backs_it_up(self, tmp_path):
        main = tmp_path / "sshd_config"
        main.write_text(UBUNTU_SSHD_CONFIG)

        changed = apply_sshd_settings(main, tmp_path / "sshd_config.d", {"PermitRootLogin": "no"})

        assert changed == [main]
        assert "PermitRootLogin no\n" in main.read_text()
        backups = list(tmp_path.glob("sshd_config.bak.*"))
        assert len(backups) == 1
        assert backups[0].read_text() == UBUNTU_SSHD_CONFIG

    def test_overriding_dropin_is_rewritten(self, tmp_path):
        main = tmp_path / "sshd_config"
        main.write_text(UBUNTU_SSHD_CONFIG)
        dropins = tmp_path / "sshd_config.d"
        dropins.mkdir()
        cloud_init = dropins / "50-cloud-init.conf"
        cloud_init.write_text("PasswordAuthentication yes\n")
        unrelated = dropins / "10-banner.conf"
        unrelated.write_text("Banner /etc/issue.net\n")

        changed = apply_sshd_settings(
            main,
            dropins,
            {"PasswordAuthentication": "no", "PubkeyAuthentication": "yes"},
        )

        assert cloud_init in changed
        assert unrelated not in changed
        assert cloud_init.read_text() == "PasswordAuthentication no\n"
        assert unrelated.read_text() == "Banner /etc/issue.net\n"
        assert "PubkeyAuthentication" not in cloud_init.read_text()

    def test_nothing_to_change_writes_nothing(self, tmp_path):
        main = tmp_path / "sshd_config"
        main.write_text("PermitRootLogin no\n")

        assert apply_sshd_settings(main, tmp_path / "missing.d", {"PermitRootLogin": "no"}) == []
        assert list(tmp_path.glob("*.bak.*")) == []
