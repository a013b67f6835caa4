"""
Unit tests for pipeline configuration.
"""

import dataclasses
from pathlib import Path

import pytest
import yaml

from enrichcorr.config import PipelineConfig


def base_settings(**extra):
    settings = {'expression_path': 'OmicsExpression.csv', 'reference_gene': 'TP53'}
    settings.update(extra)
    return settings


class TestPipelineConfig:
    """Test construction and validation"""

    def test_defaults(self):
        """Only the expression path and reference gene are required"""
        config = PipelineConfig.from_dict(base_settings())

        assert config.expression_path == Path('OmicsExpression.csv')
        assert config.gene_set_source == 'msigdb'
        assert config.msigdb_category == 'h'
        assert config.kcdf == 'gaussian'
        assert config.min_set_size == 5
        assert config.image_formats == ('pdf', 'png')
        assert config.force_recompute is False

    def test_frozen(self):
        """Settings cannot be changed after construction"""
        config = PipelineConfig.from_dict(base_settings())

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.alpha = 0.1

    def test_sequences_become_tuples(self):
        """Lists and single strings are stored as tuples"""
        config = PipelineConfig.from_dict(base_settings(
            lineages=['Lung', 'Breast'], name_keywords='TARGETS', gene_set_keywords=['HYPOXIA']
        ))

        assert config.lineages == ('Lung', 'Breast')
        assert config.name_keywords == ('TARGETS',)
        assert config.gene_set_keywords == ('HYPOXIA',)

    def test_unknown_key(self):
        """Misspelled settings are reported"""
        with pytest.raises(ValueError, match='min_setsize'):
            PipelineConfig.from_dict(base_settings(min_setsize=10))

    @pytest.mark.parametrize('bad', [
        {'kcdf': 'poisson'},
        {'gene_set_source': 'kegg'},
        {'gene_set_source': 'gmt'},
        {'gene_set_source': 'enrichr'},
        {'id_namespace': 'ensembl'},
        {'min_set_size': 0},
        {'min_set_size': 10, 'max_set_size': 5},
        {'alpha': 0.0},
        {'top_n': 0},
        {'n_jobs': 0},
        {'reference_gene': '  '},
        {'expression_orientation': 'wide'},
    ])
    def test_invalid_values(self, bad):
        """Settings that cannot produce a run raise ValueError"""
        with pytest.raises(ValueError):
            PipelineConfig.from_dict(base_settings(**bad))

    def test_with_overrides(self):
        """Overrides return a new validated copy"""
        config = PipelineConfig.from_dict(base_settings())

        forced = config.with_overrides(force_recompute=True)

        assert forced.force_recompute is True
        assert config.force_recompute is False
        with pytest.raises(ValueError):
            config.with_overrides(alpha=2.0)

    def test_engine_parameters(self):
        """Engine parameters cover everything that changes the scores"""
        config = PipelineConfig.from_dict(base_settings(kcdf='ecdf', tau=0.5))

        assert config.engine_parameters() == {
            'kcdf': 'ecdf', 'min_size': 5, 'max_size': None, 'tau': 0.5, 'mx_diff': True,
        }

    def test_to_dict_is_plain(self):
        """The dict form serialises with yaml.safe_dump"""
        config = PipelineConfig.from_dict(base_settings(lineages=['Lung']))

        dumped = yaml.safe_dump(config.to_dict())

        assert 'reference_gene: TP53' in dumped


class TestFromYaml:
    """Test loading from YAML files"""

    def test_relative_paths(self, tmp_path):
        """Relative paths resolve against the config file's directory"""
        config_file = tmp_path / 'run.yaml'
        config_file.write_text(
            "expression_path: data/OmicsExpression.csv\n"
            "metadata_path: /abs/Model.csv\n"
            "reference_gene: KRAS\n"
            "lineages: [Lung]\n"
            "gene_set_source: msigdb\n"
            "msigdb_category: c2\n"
            "msigdb_subcategory: cp.reactome\n"
            "output_dir: results\n",
            encoding='utf-8'
        )

        config = PipelineConfig.from_yaml(str(config_file))

        assert config.expression_path == tmp_path / 'data' / 'OmicsExpression.csv'
        assert config.metadata_path == Path('/abs/Model.csv')
        assert config.output_dir == tmp_path / 'results'
        assert config.lineages == ('Lung',)
        assert config.msigdb_subcategory == 'cp.reactome'

    def test_not_a_mapping(self, tmp_path):
        """A YAML list is not a configuration"""
        config_file = tmp_path / 'run.yaml'
        config_file.write_text("- a\n- b\n", encoding='utf-8')

        with pytest.raises(ValueError):
            PipelineConfig.from_yaml(str(config_file))
