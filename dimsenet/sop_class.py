"""The process-wide registry of supported SOP Classes.

The registry is built once when the module is imported and is read-only
afterwards, so lookups are safe from any thread without locking. Each
supported SOP Class is also available as a module attribute, for example
``sop_class.Verification`` or ``sop_class.CTImageStorage``.
"""

import logging
from types import MappingProxyType
from typing import cast, Mapping

from pydicom.uid import UID


LOGGER = logging.getLogger(__name__)

CATEGORY_VERIFICATION = "Verification"
CATEGORY_STORAGE = "Storage"
CATEGORY_QR = "QueryRetrieve"
CATEGORY_UNKNOWN = "Unknown"


class SOPClass(UID):
    """Extend :class:`~pydicom.uid.UID` with the SOP Class's service
    category and registry keyword.
    """

    _category: str = CATEGORY_UNKNOWN
    _keyword: str = ""

    def __new__(cls, val: str) -> "SOPClass":
        if isinstance(val, SOPClass):
            return val

        return cast("SOPClass", super().__new__(cls, val))

    @property
    def category(self) -> str:
        """Return the service category the SOP Class belongs to."""
        return self._category

    @property
    def keyword(self) -> str:
        """Return the SOP Class keyword, or the *pydicom* keyword if not
        registered.
        """
        return self._keyword or super().keyword


_VERIFICATION_CLASSES = {
    "Verification": "1.2.840.10008.1.1",
}
_QR_CLASSES = {
    "PatientRootQueryRetrieveInformationModelFind": "1.2.840.10008.5.1.4.1.2.1.1",
    "PatientRootQueryRetrieveInformationModelMove": "1.2.840.10008.5.1.4.1.2.1.2",
    "PatientRootQueryRetrieveInformationModelGet": "1.2.840.10008.5.1.4.1.2.1.3",
    "StudyRootQueryRetrieveInformationModelFind": "1.2.840.10008.5.1.4.1.2.2.1",
    "StudyRootQueryRetrieveInformationModelMove": "1.2.840.10008.5.1.4.1.2.2.2",
    "StudyRootQueryRetrieveInformationModelGet": "1.2.840.10008.5.1.4.1.2.2.3",
    "PatientStudyOnlyQueryRetrieveInformationModelFind": "1.2.840.10008.5.1.4.1.2.3.1",
    "PatientStudyOnlyQueryRetrieveInformationModelMove": "1.2.840.10008.5.1.4.1.2.3.2",
    "PatientStudyOnlyQueryRetrieveInformationModelGet": "1.2.840.10008.5.1.4.1.2.3.3",
    "CompositeInstanceRootRetrieveMove": "1.2.840.10008.5.1.4.1.2.4.2",
    "CompositeInstanceRootRetrieveGet": "1.2.840.10008.5.1.4.1.2.4.3",
}
# pylint: disable=line-too-long
_STORAGE_CLASSES = {
    "ComputedRadiographyImageStorage": "1.2.840.10008.5.1.4.1.1.1",
    "DigitalXRayImageStorageForPresentation": "1.2.840.10008.5.1.4.1.1.1.1",
    "DigitalXRayImageStorageForProcessing": "1.2.840.10008.5.1.4.1.1.1.1.1",
    "DigitalMammographyXRayImageStorageForPresentation": "1.2.840.10008.5.1.4.1.1.1.2",
    "DigitalMammographyXRayImageStorageForProcessing": "1.2.840.10008.5.1.4.1.1.1.2.1",
    "CTImageStorage": "1.2.840.10008.5.1.4.1.1.2",
    "EnhancedCTImageStorage": "1.2.840.10008.5.1.4.1.1.2.1",
    "UltrasoundMultiFrameImageStorage": "1.2.840.10008.5.1.4.1.1.3.1",
    "MRImageStorage": "1.2.840.10008.5.1.4.1.1.4",
    "EnhancedMRImageStorage": "1.2.840.10008.5.1.4.1.1.4.1",
    "MRSpectroscopyStorage": "1.2.840.10008.5.1.4.1.1.4.2",
    "UltrasoundImageStorage": "1.2.840.10008.5.1.4.1.1.6.1",
    "SecondaryCaptureImageStorage": "1.2.840.10008.5.1.4.1.1.7",
    "MultiFrameSingleBitSecondaryCaptureImageStorage": "1.2.840.10008.5.1.4.1.1.7.1",
    "MultiFrameGrayscaleByteSecondaryCaptureImageStorage": "1.2.840.10008.5.1.4.1.1.7.2",
    "MultiFrameGrayscaleWordSecondaryCaptureImageStorage": "1.2.840.10008.5.1.4.1.1.7.3",
    "MultiFrameTrueColorSecondaryCaptureImageStorage": "1.2.840.10008.5.1.4.1.1.7.4",
    "TwelveLeadECGWaveformStorage": "1.2.840.10008.5.1.4.1.1.9.1.1",
    "GeneralECGWaveformStorage": "1.2.840.10008.5.1.4.1.1.9.1.2",
    "GrayscaleSoftcopyPresentationStateStorage": "1.2.840.10008.5.1.4.1.1.11.1",
    "XRayAngiographicImageStorage": "1.2.840.10008.5.1.4.1.1.12.1",
    "EnhancedXAImageStorage": "1.2.840.10008.5.1.4.1.1.12.1.1",
    "XRayRadiofluoroscopicImageStorage": "1.2.840.10008.5.1.4.1.1.12.2",
    "BreastTomosynthesisImageStorage": "1.2.840.10008.5.1.4.1.1.13.1.3",
    "NuclearMedicineImageStorage": "1.2.840.10008.5.1.4.1.1.20",
    "ParametricMapStorage": "1.2.840.10008.5.1.4.1.1.30",
    "RawDataStorage": "1.2.840.10008.5.1.4.1.1.66",
    "SpatialRegistrationStorage": "1.2.840.10008.5.1.4.1.1.66.1",
    "SegmentationStorage": "1.2.840.10008.5.1.4.1.1.66.4",
    "VLEndoscopicImageStorage": "1.2.840.10008.5.1.4.1.1.77.1.1",
    "VLMicroscopicImageStorage": "1.2.840.10008.5.1.4.1.1.77.1.2",
    "VLPhotographicImageStorage": "1.2.840.10008.5.1.4.1.1.77.1.4",
    "VLWholeSlideMicroscopyImageStorage": "1.2.840.10008.5.1.4.1.1.77.1.6",
    "BasicTextSRStorage": "1.2.840.10008.5.1.4.1.1.88.11",
    "EnhancedSRStorage": "1.2.840.10008.5.1.4.1.1.88.22",
    "ComprehensiveSRStorage": "1.2.840.10008.5.1.4.1.1.88.33",
    "KeyObjectSelectionDocumentStorage": "1.2.840.10008.5.1.4.1.1.88.59",
    "EncapsulatedPDFStorage": "1.2.840.10008.5.1.4.1.1.104.1",
    "PositronEmissionTomographyImageStorage": "1.2.840.10008.5.1.4.1.1.128",
    "EnhancedPETImageStorage": "1.2.840.10008.5.1.4.1.1.130",
    "RTImageStorage": "1.2.840.10008.5.1.4.1.1.481.1",
    "RTDoseStorage": "1.2.840.10008.5.1.4.1.1.481.2",
    "RTStructureSetStorage": "1.2.840.10008.5.1.4.1.1.481.3",
    "RTBeamsTreatmentRecordStorage": "1.2.840.10008.5.1.4.1.1.481.4",
    "RTPlanStorage": "1.2.840.10008.5.1.4.1.1.481.5",
    "RTIonPlanStorage": "1.2.840.10008.5.1.4.1.1.481.8",
}
# pylint: enable=line-too-long


def _build_registry() -> Mapping[str, SOPClass]:
    """Return the read-only registry, creating the module attributes."""
    registry: dict[str, SOPClass] = {}
    groups = (
        (CATEGORY_VERIFICATION, _VERIFICATION_CLASSES),
        (CATEGORY_STORAGE, _STORAGE_CLASSES),
        (CATEGORY_QR, _QR_CLASSES),
    )
    for category, group in groups:
        for keyword, uid in group.items():
            sop_class = SOPClass(uid)
            sop_class._category = category
            sop_class._keyword = keyword
            registry[uid] = sop_class
            globals()[keyword] = sop_class

    return MappingProxyType(registry)


_REGISTRY: Mapping[str, SOPClass] = _build_registry()

STORAGE_CLASS_UIDS: frozenset[str] = frozenset(_STORAGE_CLASSES.values())
QR_CLASS_UIDS: frozenset[str] = frozenset(_QR_CLASSES.values())
VERIFICATION_CLASS_UIDS: frozenset[str] = frozenset(_VERIFICATION_CLASSES.values())


def uid_to_sop_class(uid: str) -> SOPClass:
    """Return the :class:`SOPClass` corresponding to `uid`.

    Parameters
    ----------
    uid : str
        The SOP Class UID.

    Returns
    -------
    sop_class.SOPClass
        The registered SOP Class, or a new unregistered one with the
        ``"Unknown"`` category if `uid` isn't in the registry.
    """
    return _REGISTRY.get(uid) or SOPClass(uid)


def sop_class_category(uid: str) -> str:
    """Return the service category of the SOP Class `uid`.

    One of ``"Verification"``, ``"Storage"``, ``"QueryRetrieve"`` or
    ``"Unknown"``.
    """
    return uid_to_sop_class(uid).category


def is_storage_class(uid: str) -> bool:
    """Return ``True`` if `uid` is a registered storage SOP Class."""
    return uid in STORAGE_CLASS_UIDS


def registered_uids() -> list[str]:
    """Return the UIDs of every registered SOP Class."""
    return list(_REGISTRY)
