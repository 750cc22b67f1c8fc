"""
Server-side services: storage, synthesis, job store, worker, retention.
"""
from ttscache.services.storage import ArtifactStorage
from ttscache.services.synthesizer import (
    Synthesizer,
    CredentialValidator,
    OpenAISpeechSynthesizer,
    ProviderCredentialValidator,
)
from ttscache.services.generation_store import GenerationStore, OwnerUsage
from ttscache.services.generation_worker import GenerationWorker
from ttscache.services.generation_service import GenerationService, Artifact
from ttscache.services.retention import RetentionSweeper, ExpirySweepReport

__all__ = [
    'ArtifactStorage',
    'Synthesizer',
    'CredentialValidator',
    'OpenAISpeechSynthesizer',
    'ProviderCredentialValidator',
    'GenerationStore',
    'OwnerUsage',
    'GenerationWorker',
    'GenerationService',
    'Artifact',
    'RetentionSweeper',
    'ExpirySweepReport',
]
