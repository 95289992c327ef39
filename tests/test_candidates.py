"""Tests for candidate generation: masks, rules and decorators."""

import pytest

from pathspray.core.config import ConfigurationError, WordConfig
from pathspray.modules.words.candidates import Candidate, CandidateGenerator, parse_extension
from pathspray.modules.words.mask import MaskError, dictionary_mask, load_dictionary, parse_mask
from pathspray.modules.words.rules import RuleError, compile_line, compile_rules, load_rules


class TestMask:
    """Tests for the mask grammar."""

    def test_charset_repeat(self):
        """Test a repeated digit group expands in index order."""
        mask = parse_mask("admin{?d#2}")
        assert len(mask) == 100
        assert mask[0] == "admin00"
        assert mask[5] == "admin05"
        assert mask[99] == "admin99"

    def test_mixed_charsets_dedup(self):
        """Test overlapping charset codes do not repeat characters."""
        mask = parse_mask("{?lw}")
        assert len(mask) == 62

    def test_dictionaries(self):
        """Test dictionary references by position."""
        mask = parse_mask("{?0}/{?1}", [["api", "v1"], ["users", "admin"]])
        assert list(mask) == ["api/users", "api/admin", "v1/users", "v1/admin"]

    def test_keywords(self):
        """Test named keyword groups."""
        mask = parse_mask("index.{@ext}", keywords={"ext": ["php", "asp"]})
        assert list(mask) == ["index.php", "index.asp"]

    def test_dictionary_mask(self):
        """Test the implicit mask over every dictionary."""
        mask = dictionary_mask([["a", "b"], ["c"]])
        assert mask.source == "{?01}"
        assert list(mask) == ["a", "b", "c"]

    @pytest.mark.parametrize("word", ["admin{?d", "a}b", "{?x}", "{@nope}", "{?1}", "{}", "{?d#0}"])
    def test_malformed_masks(self, word):
        """Test malformed masks raise MaskError, a ConfigurationError."""
        with pytest.raises(MaskError):
            parse_mask(word, [["only"]])
        assert issubclass(MaskError, ConfigurationError)

    def test_load_dictionary_strips_lines(self, tmp_path):
        """Test CRLF and blank lines in dictionaries."""
        path = tmp_path / "words.txt"
        path.write_bytes(b"admin\r\n\r\n  login \r\nbackup\n\n")
        assert load_dictionary(path) == ["admin", "login", "backup"]

    def test_load_missing_dictionary(self, tmp_path):
        """Test an unreadable dictionary is a configuration error."""
        with pytest.raises(ConfigurationError):
            load_dictionary(tmp_path / "missing.txt")


class TestRules:
    """Tests for the rule compiler."""

    def test_simple_functions(self):
        """Test case, reverse and append functions."""
        assert compile_line("c$1")("admin") == "Admin1"
        assert compile_line("r")("abc") == "cba"
        assert compile_line("u")("Admin") == "ADMIN"
        assert compile_line("^_")("tmp") == "_tmp"
        assert compile_line("sa4")("banana") == "b4n4n4"

    def test_position_functions(self):
        """Test position arguments."""
        assert compile_line("T0")("admin") == "Admin"
        assert compile_line("D0")("admin") == "dmin"
        assert compile_line("'3")("admin") == "adm"

    def test_rejections(self):
        """Test rejection functions drop words."""
        assert compile_line("<4")("admin") is None
        assert compile_line(">4")("admin") == "admin"
        assert compile_line("!a")("admin") is None
        assert compile_line("/z")("admin") is None
        assert compile_line("_5")("admin") == "admin"

    def test_comments_and_blanks(self):
        """Test blank lines and comments are ignored."""
        rules = compile_rules("# header\n\n:\nu\n")
        assert [r.source for r in rules] == [":", "u"]

    def test_filter_without_rule_files(self):
        """Test a filter alone compiles to the identity rule plus the filter."""
        rules = load_rules([], ">3")
        assert len(rules) == 1
        assert rules[0]("ab") is None
        assert rules[0]("abcd") == "abcd"

    @pytest.mark.parametrize("line", ["q", "$", "sa", "T", "T?"])
    def test_malformed_rules(self, line):
        """Test unknown functions and missing arguments."""
        with pytest.raises(RuleError):
            compile_line(line)

    def test_missing_rule_file(self, tmp_path):
        """Test an unreadable rule file is a configuration error."""
        with pytest.raises(ConfigurationError):
            load_rules([tmp_path / "missing.rule"])


class TestCandidateGenerator:
    """Tests for the indexable candidate sequence."""

    def test_length_is_words_times_rules(self):
        """Test len == word count x rule count."""
        generator = CandidateGenerator(["a", "b", "c"], compile_rules(":\nu"))
        assert generator.word_count == 3
        assert generator.rule_count == 2
        assert len(generator) == 6
        assert [generator[i] for i in range(4)] == ["a", "A", "b", "B"]

    def test_length_without_rules(self):
        """Test a generator without rules has one candidate per word."""
        generator = CandidateGenerator(["a", "b"])
        assert len(generator) == 2

    def test_uppercase_then_extension(self):
        """Test case is applied before the extension is appended."""
        generator = CandidateGenerator(["admin"], uppercase=True, extensions=["php"])
        assert generator[0] == "ADMIN.php"

    def test_affixes_are_word_dimensions(self):
        """Test prefixes and extensions multiply the word count."""
        generator = CandidateGenerator(["a", "b"], prefixes=["x", "y"], extensions=["php", "bak"])
        assert generator.word_count == 8
        assert generator[0] == "xa.php"
        assert generator[1] == "xa.bak"
        assert generator[2] == "ya.php"
        assert generator[4] == "xb.php"

    def test_remove_and_exclude_are_independent(self):
        """Test remove strips an extension while exclude drops the word."""
        words = ["index.php", "login.bak", "readme"]

        removed = CandidateGenerator(words, remove_extensions=["php"])
        assert [removed[i] for i in range(3)] == ["index", "login.bak", "readme"]

        excluded = CandidateGenerator(words, exclude_extensions=["bak"])
        assert [excluded[i] for i in range(3)] == ["index.php", None, "readme"]
        assert [c.path for c in excluded[0:3]] == ["index.php", "readme"]

    def test_replace(self):
        """Test substitutions run last."""
        generator = CandidateGenerator(["my_file"], replaces={"_": "-"}, suffixes=["_old"])
        assert generator[0] == "my-file-old"

    def test_dropped_candidates_keep_index(self):
        """Test rejected candidates leave a hole but keep the length."""
        generator = CandidateGenerator(["ab", "abcd"], load_rules([], ">3"))
        assert len(generator) == 2
        assert generator[0] is None
        assert generator[0:2] == [Candidate(1, "abcd")]

    def test_slices_are_deterministic(self):
        """Test the same slice always yields the same candidates."""
        generator = CandidateGenerator(parse_mask("{?l}{?d}"), compile_rules(":\nc"))
        assert generator[100:140] == generator[100:140]
        assert generator[100:140] == list(generator.iter_range(100, 140))
        assert generator[-1] == "Z9"

    def test_slice_step_unsupported(self):
        """Test stepped slices are rejected."""
        generator = CandidateGenerator(["a", "b", "c"])
        with pytest.raises(ValueError):
            generator[0:3:2]

    def test_index_out_of_range(self):
        """Test indexes past the end raise IndexError."""
        generator = CandidateGenerator(["a"])
        with pytest.raises(IndexError):
            generator.path(1)

    def test_total_with_limit(self):
        """Test limit caps the exclusive end of the range."""
        generator = CandidateGenerator(parse_mask("{?d#2}"))
        assert generator.total() == 100
        assert generator.total(10, 20) == 30
        assert generator.total(90, 20) == 100

    def test_conflicting_case(self):
        """Test uppercase with lowercase is rejected."""
        with pytest.raises(ConfigurationError):
            CandidateGenerator(["a"], uppercase=True, lowercase=True)
        with pytest.raises(ValueError):
            WordConfig(word="a", uppercase=True, lowercase=True)

    def test_from_config(self, tmp_path):
        """Test building from word configuration with a dictionary."""
        path = tmp_path / "words.txt"
        path.write_text("admin\nlogin\n")
        config = WordConfig(dictionaries=[path], extensions=".php,bak")

        generator = CandidateGenerator.from_config(config)
        assert generator.word == "{?0}"
        assert generator.dictionaries == [str(path)]
        assert len(generator) == 4
        assert generator[0] == "admin.php"
        assert generator[3] == "login.bak"

    def test_from_config_without_words(self):
        """Test a configuration without mask or dictionary."""
        with pytest.raises(ConfigurationError):
            CandidateGenerator.from_config(WordConfig())

    def test_parse_extension(self):
        """Test the extension of the last path segment."""
        assert parse_extension("admin/index.php") == "php"
        assert parse_extension("archive.tar.gz") == "tar.gz"
        assert parse_extension("v1.0/readme") == ""
