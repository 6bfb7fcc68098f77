from .firebase_identity import FirebaseIdentityProvider
from .firestore_profiles import FirestoreEventJoiner, FirestoreProfileStore

__all__ = ["FirebaseIdentityProvider", "FirestoreEventJoiner", "FirestoreProfileStore"]
