# dynapi to json encoding

import datetime
import decimal
from flask.json.provider import DefaultJSONProvider
from uuid import UUID
import dynapi
from .config import is_debug


class _DynApiJSONEncoder:
    """
    JSON encoding of the values that may occur in shaped results
    """

    # pylint: disable=too-many-return-statements,arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if obj is None:
            return None
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, datetime.datetime):
            return obj.isoformat(" ")
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            if obj == b"":
                return ""
            dynapi.log.debug("DynApiJSONEncoder: serializing bytes obj")
            return obj.hex()

        # We shouldn't get here: the shaped results only contain column values
        if not is_debug():
            dynapi.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
            return {"error": "DynApiJSONEncoder invalid object"}

        return self.ghetto_encode(obj)

    @staticmethod
    def ghetto_encode(obj):
        """
        if everything else failed, try to encode the public obj attributes
        i.e. those attributes without a _ prefix
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        try:
            result = {}
            for k, v in vars(obj).items():
                if not k.startswith("_"):
                    if isinstance(v, (int, float)) or v is None:
                        result[k] = v
                    else:
                        result[k] = str(v)
        except TypeError:
            result = str(obj)
        return result


class DynApiJSONProvider(_DynApiJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    sort_keys = False
