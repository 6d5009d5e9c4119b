"""
User Profile Manager

Profile records keyed by user id. The training phase is not a profile
column: it lives in the auth user's metadata.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from medanna_simulator.case_models import ALL_TRAINING_PHASES

logger = logging.getLogger(__name__)


@dataclass
class UserProfile:
    """Profile row plus the training phase from account metadata."""
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    training_phase: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "trainingPhase": self.training_phase,
        }


def training_phase_from_metadata(user_metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    phase = (user_metadata or {}).get("training_phase")
    return phase if phase in ALL_TRAINING_PHASES else None


class UserProfileManager:
    """
    Reads and updates user profiles.

    Missing profiles read as None rather than raising; write errors propagate.
    """

    def __init__(self, supabase_client=None):
        """
        Initialize UserProfileManager.

        Args:
            supabase_client: Supabase client instance (optional)
        """
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None

        if not self.use_supabase:
            logger.warning("⚠️ [UserProfileManager] Supabase not available, profiles disabled")

    async def get_user_profile(
        self,
        user_id: str,
        user_metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[UserProfile]:
        """
        Get user's profile.

        Args:
            user_id: User UUID
            user_metadata: Auth metadata of the signed-in user, if already known

        Returns:
            UserProfile or None if not found
        """
        if not self.use_supabase:
            return None

        result = self.supabase.table('profiles') \
            .select('*') \
            .eq('id', user_id) \
            .limit(1) \
            .execute()

        if not result.data:
            logger.warning(f"⚠️ [UserProfileManager] Profile not found for user {user_id[:20]}...")
            return None

        data = result.data[0]
        return UserProfile(
            id=data['id'],
            email=data.get('email'),
            full_name=data.get('full_name'),
            training_phase=training_phase_from_metadata(user_metadata),
        )

    async def update_user_profile(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        training_phase: Optional[str] = None,
        user_metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[UserProfile]:
        """
        Update the profile name and/or the training phase.

        Args:
            user_id: User UUID
            full_name: New display name
            training_phase: New training phase, stored in auth metadata
            user_metadata: Current auth metadata, merged with the new phase

        Returns:
            Updated profile, or None if the profile does not exist
        """
        if not self.use_supabase:
            return None

        metadata = dict(user_metadata or {})

        if training_phase is not None:
            if training_phase not in ALL_TRAINING_PHASES:
                raise ValueError(f"Unknown training phase '{training_phase}'")
            metadata['training_phase'] = training_phase
            self.supabase.auth.admin.update_user_by_id(user_id, {'user_metadata': metadata})
            logger.info(f"✅ [UserProfileManager] Updated training phase for user {user_id[:20]}...: {training_phase}")

        if full_name is not None:
            result = self.supabase.table('profiles') \
                .update({'full_name': full_name}) \
                .eq('id', user_id) \
                .execute()
            if not result.data:
                logger.warning(f"⚠️ [UserProfileManager] Update returned no data for user {user_id[:20]}...")
                return None
            logger.info(f"✅ [UserProfileManager] Updated name for user {user_id[:20]}...")

        return await self.get_user_profile(user_id, metadata)

    async def get_display_name(self, user_id: str) -> Optional[str]:
        """Full name, falling back to the email's local part."""
        profile = await self.get_user_profile(user_id)
        if profile is None:
            return None
        if profile.full_name:
            return profile.full_name
        return profile.email.split('@')[0] if profile.email else None
