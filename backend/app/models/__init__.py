from app.models.game import Game, GameTeam, GameTeamMember, GameResult, GameQueueEntry
from app.models.community_rating import CommunityRating
from app.models.rating_event import CommunityRatingEvent
from app.models.game_rating import CommunityGameRating, CommunityGameRatingPlayer
