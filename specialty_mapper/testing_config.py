"""
Small in-memory configuration shared by the test modules.

The documents below are deliberately tiny so that expected scores can be
worked out by hand. `write_test_data` lays the same documents out on disk in
the directory shape `load_mapping_configuration` expects.
"""

import copy
import json
from pathlib import Path
from typing import Optional

import yaml

from .config_loader import MappingConfiguration, validate_document
from .config_manager import PRESETS
from .mapping_engine import SpecialtyMappingEngine
from .schemas import EngineSettings, OverridesDocument, RulesDocument, SynonymsDocument, TaxonomyDocument

TEST_TAXONOMY = {
    'version': 'test-1',
    'specialties': [
        {'id': 'CARD-GENERAL', 'domain': 'ADULT', 'parent_bucket': 'Cardiology',
         'display_name': 'General Cardiology', 'synonyms': ['Cardiology']},
        {'id': 'CARD-INTERVENTIONAL', 'domain': 'ADULT', 'parent_bucket': 'Cardiology',
         'display_name': 'Interventional Cardiology'},
        {'id': 'CARD-NONINVASIVE', 'domain': 'ADULT', 'parent_bucket': 'Cardiology',
         'display_name': 'Noninvasive Cardiology', 'synonyms': ['Non-invasive Cardiology']},
        {'id': 'CARD-EP', 'domain': 'ADULT', 'parent_bucket': 'Cardiology',
         'display_name': 'Cardiac Electrophysiology', 'synonyms': ['Electrophysiology']},
        {'id': 'CARD-HEART-FAILURE', 'domain': 'ADULT', 'parent_bucket': 'Cardiology',
         'display_name': 'Advanced Heart Failure', 'synonyms': ['Heart Failure Cardiology']},
        {'id': 'SURG-GENERAL', 'domain': 'ADULT', 'parent_bucket': 'General Surgery',
         'display_name': 'General Surgery', 'synonyms': ['Surgery']},
        {'id': 'SURG-CARDIOTHORACIC', 'domain': 'ADULT', 'parent_bucket': 'General Surgery',
         'display_name': 'Cardiothoracic Surgery', 'synonyms': ['Cardiac Surgery']},
        {'id': 'IM-GENERAL', 'domain': 'ADULT', 'parent_bucket': 'Internal Medicine',
         'display_name': 'Internal Medicine'},
        {'id': 'IM-HOSPITALIST', 'domain': 'ADULT', 'parent_bucket': 'Internal Medicine',
         'display_name': 'Hospitalist'},
        {'id': 'HEMONC-GENERAL', 'domain': 'ADULT', 'parent_bucket': 'HemOnc',
         'display_name': 'Hematology/Oncology'},
        {'id': 'ONC-MEDICAL', 'domain': 'ADULT', 'parent_bucket': 'HemOnc',
         'display_name': 'Medical Oncology'},
        {'id': 'RADONC', 'domain': 'ADULT', 'parent_bucket': 'Radiation Oncology',
         'display_name': 'Radiation Oncology'},
        {'id': 'NEPHROLOGY', 'domain': 'ADULT', 'parent_bucket': 'Nephrology',
         'display_name': 'Nephrology'},
        {'id': 'UROLOGY', 'domain': 'ADULT', 'parent_bucket': 'Urology',
         'display_name': 'Urology'},
        {'id': 'PEDS-GENERAL', 'domain': 'PEDIATRIC', 'parent_bucket': 'Pediatrics',
         'display_name': 'General Pediatrics', 'synonyms': ['Pediatrics']},
        {'id': 'PEDS-CARDIOLOGY', 'domain': 'PEDIATRIC', 'parent_bucket': 'Pediatric Cardiology',
         'display_name': 'Pediatric Cardiology'},
        {'id': 'PEDS-NEONATOLOGY', 'domain': 'PEDIATRIC', 'parent_bucket': 'Neonatology',
         'display_name': 'Neonatology', 'synonyms': ['NICU']},
    ],
}

TEST_SYNONYMS = {
    'version': 'test-1',
    'domain_hints': {
        'pediatric': ['pediatric', 'pediatrics', 'peds', 'neonatal', 'child'],
        'adult': ['adult'],
    },
    'parent_buckets': [
        {'domain': 'ADULT', 'bucket': 'Cardiology', 'synonyms': ['cardiac', 'cardio']},
        {'domain': 'ADULT', 'bucket': 'HemOnc', 'synonyms': ['oncology', 'hematology', 'hem onc']},
    ],
    'bucket_hints': [
        {'id': 'adult-heart', 'domain': 'ADULT', 'bucket': 'Cardiology', 'pattern': r'^heart\b'},
        {'id': 'adult-failure', 'domain': 'ADULT', 'bucket': 'Nephrology', 'pattern': r'\bfailure\b'},
        {'id': 'peds-cardio', 'domain': 'PEDIATRIC', 'bucket': 'Pediatric Cardiology', 'pattern': r'\bcardio'},
    ],
    'bucket_guards': [
        {'domain': 'ADULT', 'bucket': 'Cardiology', 'tokens': ['surgery', 'surgical']},
        {'domain': 'ADULT', 'bucket': 'HemOnc', 'tokens': ['radiation']},
    ],
    'subspecialty_tokens': {
        'noninvasive': ['non-invasive', 'non invasive'],
        'pediatric': ['peds', 'paediatric', 'pediatrics'],
        'electrophysiology': ['ep'],
    },
    'specialty_negative_tokens': {
        'CARD-GENERAL': ['interventional', 'noninvasive', 'non-invasive', 'electrophysiology'],
        'CARD-INTERVENTIONAL': ['non invasive', 'noninvasive'],
    },
    'source_synonyms': {
        'TestSurvey': {'CARD-EP': ['cardiology ep']},
    },
}

TEST_GLOBAL_RULES = {
    'version': 'test-1',
    'scope': 'global',
    'rules': [
        {'id': 'base-cardiology', 'pattern': '^cardiology$', 'canonical_id': 'CARD-GENERAL'},
        {'id': 'base-hospitalist', 'match': 'exact', 'pattern': 'Hospitalist',
         'canonical_id': 'IM-HOSPITALIST', 'confidence': 0.60},
        {'id': 'base-general-pediatrics', 'pattern': '^general pediatrics$', 'canonical_id': 'PEDS-GENERAL'},
    ],
}

TEST_PEDIATRIC_RULES = {
    'version': 'test-1',
    'scope': 'domain',
    'domain': 'PEDIATRIC',
    'rules': [
        {'id': 'peds-nicu', 'pattern': '^nicu$', 'canonical_id': 'PEDS-NEONATOLOGY'},
    ],
}

TEST_SOURCE_RULES = {
    'version': 'test-1',
    'scope': 'source',
    'source': 'MGMA',
    'rules': [
        {'id': 'mgma-cardiology-interventional', 'match': 'exact', 'pattern': 'Cardiology: Interventional',
         'canonical_id': 'CARD-INTERVENTIONAL', 'confidence': 0.97},
    ],
}

TEST_OVERRIDES = {
    'version': 'test-2',
    'overrides': [
        {'id': 'ovr-old', 'pattern_or_exact': 'Oncology/Hematology', 'canonical_id': 'ONC-MEDICAL',
         'reason': 'first review', 'created_at': '2024-01-10T09:00:00Z'},
        {'id': 'ovr-new', 'pattern_or_exact': 'Oncology/Hematology', 'canonical_id': 'HEMONC-GENERAL',
         'reason': 'vendor confirmed combined benchmark', 'created_at': '2024-06-02T14:00:00Z'},
        {'id': 'ovr-survey', 'pattern_or_exact': 'Cardiology', 'canonical_id': 'CARD-EP',
         'reason': 'TestSurvey reports EP under plain Cardiology', 'created_at': '2024-02-01T00:00:00Z',
         'source': 'TestSurvey'},
        {'id': 'ovr-newborn', 'pattern_or_exact': 'Newborn Medicine', 'canonical_id': 'PEDS-NEONATOLOGY',
         'reason': 'unit rename', 'created_at': '2024-03-01T00:00:00Z'},
    ],
}

TEST_DATA_CONFIG = {
    'taxonomy': 'taxonomy.json',
    'synonyms': 'synonyms.yaml',
    'rules': ['rules/global.yaml', 'rules/pediatric.yaml', 'rules/source_mgma.yaml'],
    'overrides': 'overrides.yaml',
}


def build_test_settings(preset: str = 'default', threshold: Optional[float] = None, **values) -> EngineSettings:
    settings = copy.deepcopy(PRESETS[preset])
    settings['preset'] = preset
    settings.update(values)
    if threshold is not None:
        settings['min_decision_threshold'] = threshold
    return EngineSettings.model_validate(settings)


def build_test_configuration(settings: Optional[EngineSettings] = None, taxonomy=None, synonyms=None,
                             rule_documents=None, overrides=None) -> MappingConfiguration:
    """Validated configuration from the in-memory documents; any document can be swapped out."""
    rules = rule_documents if rule_documents is not None else [
        TEST_GLOBAL_RULES, TEST_PEDIATRIC_RULES, TEST_SOURCE_RULES,
    ]
    return MappingConfiguration(
        taxonomy=validate_document(TaxonomyDocument, taxonomy or TEST_TAXONOMY, 'taxonomy'),
        synonyms=validate_document(SynonymsDocument, synonyms or TEST_SYNONYMS, 'synonyms'),
        rule_documents=tuple(validate_document(RulesDocument, doc, f'rules[{i}]') for i, doc in enumerate(rules)),
        overrides=validate_document(OverridesDocument, overrides or TEST_OVERRIDES, 'overrides'),
        settings=settings or build_test_settings(),
    )


def build_test_engine(preset: str = 'default', threshold: Optional[float] = None, **values) -> SpecialtyMappingEngine:
    return SpecialtyMappingEngine(build_test_configuration(build_test_settings(preset, threshold, **values)))


def write_test_data(directory) -> Path:
    """Writes the test documents under `directory` using TEST_DATA_CONFIG paths."""
    base = Path(directory)
    (base / 'rules').mkdir(parents=True, exist_ok=True)
    with open(base / 'taxonomy.json', 'w', encoding='utf-8') as f:
        json.dump(TEST_TAXONOMY, f, indent=2)
    documents = {
        'synonyms.yaml': TEST_SYNONYMS,
        'rules/global.yaml': TEST_GLOBAL_RULES,
        'rules/pediatric.yaml': TEST_PEDIATRIC_RULES,
        'rules/source_mgma.yaml': TEST_SOURCE_RULES,
        'overrides.yaml': TEST_OVERRIDES,
    }
    for relative, document in documents.items():
        with open(base / relative, 'w', encoding='utf-8') as f:
            yaml.safe_dump(document, f, sort_keys=False)
    return base
