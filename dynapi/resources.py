# resources.py: the flask-restful resources of the generic dynapi routes
#
# Every resource method maps an HTTP method to an operation type and hands the request
# over to the Execution orchestrator. The resource classes are decorated by dynapi_api.api_decorator,
# which sets the `execution` attribute and adds the swagger documentation and the error handling.
from flask import jsonify, make_response, request
from flask_restful_swagger_2 import Resource
from .auth import current_user
from .constants import (
    BULK_DESTROY,
    BULK_UPDATE,
    DESTROY,
    EXPORT,
    FUNCTION,
    INDEX,
    MODEL_FUNCTION,
    RELATION_BULK_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_DESTROY,
    RELATION_INDEX,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    SHOW,
    STORE,
    UPDATE,
)


class DynApiResource(Resource):
    """
    Base class of the dynapi resources
    """

    execution = None  # Execution orchestrator, set when the resource is exposed
    operations = {}  # http method name => operation type

    def execute(self, op_type, model, **kwargs):
        """
        Run an operation with the arguments of the current request
        :param op_type: operation type
        :param model: url model name
        :param kwargs: ids, relation names and function name from the url
        :return: flask response
        """
        data = {} if request.method == "GET" else request.get_payload()
        result = self.execution.run(op_type, model, context=request.dynapi_context, data=data, auth=current_user(), **kwargs)
        return make_response(jsonify(result.payload), result.status)


class CollectionResource(DynApiResource):
    operations = {"get": INDEX, "post": STORE, "put": BULK_UPDATE, "delete": BULK_DESTROY}

    def get(self, model):
        """Retrieve a collection"""
        return self.execute(INDEX, model)

    def post(self, model):
        """Create an object"""
        return self.execute(STORE, model)

    def put(self, model):
        """Update the objects listed in ids"""
        return self.execute(BULK_UPDATE, model)

    def delete(self, model):
        """Delete the objects listed in ids"""
        return self.execute(BULK_DESTROY, model)


class ExportResource(DynApiResource):
    operations = {"get": EXPORT}

    def get(self, model):
        """Export a collection as a table"""
        return self.execute(EXPORT, model)


class FunctionResource(DynApiResource):
    operations = {"post": FUNCTION}

    def post(self, model, function):
        """Call a model function"""
        return self.execute(FUNCTION, model, function=function)


class InstanceResource(DynApiResource):
    operations = {"get": SHOW, "put": UPDATE, "patch": UPDATE, "delete": DESTROY}

    def get(self, model, model_id):
        """Retrieve an object"""
        return self.execute(SHOW, model, model_id=model_id)

    def put(self, model, model_id):
        """Update an object"""
        return self.execute(UPDATE, model, model_id=model_id)

    def patch(self, model, model_id):
        """Update an object"""
        return self.execute(UPDATE, model, model_id=model_id)

    def delete(self, model, model_id):
        """Delete an object"""
        return self.execute(DESTROY, model, model_id=model_id)


class InstanceFunctionResource(DynApiResource):
    operations = {"post": MODEL_FUNCTION}

    def post(self, model, model_id, function):
        """Call a function of an object"""
        return self.execute(MODEL_FUNCTION, model, model_id=model_id, function=function)


class RelationResource(DynApiResource):
    operations = {"get": RELATION_INDEX, "post": RELATION_STORE, "put": RELATION_BULK_UPDATE, "delete": RELATION_BULK_DESTROY}

    def get(self, model, model_id, relation):
        """Retrieve the related objects"""
        return self.execute(RELATION_INDEX, model, model_id=model_id, relation=relation)

    def post(self, model, model_id, relation):
        """Add related objects"""
        return self.execute(RELATION_STORE, model, model_id=model_id, relation=relation)

    def put(self, model, model_id, relation):
        """Update the related objects listed in ids"""
        return self.execute(RELATION_BULK_UPDATE, model, model_id=model_id, relation=relation)

    def delete(self, model, model_id, relation):
        """Remove the related objects listed in ids"""
        return self.execute(RELATION_BULK_DESTROY, model, model_id=model_id, relation=relation)


class RelationInstanceResource(DynApiResource):
    operations = {"get": RELATION_SHOW, "put": RELATION_UPDATE, "patch": RELATION_UPDATE, "delete": RELATION_DESTROY}

    def get(self, model, model_id, relation, relation_id):
        """Retrieve a related object"""
        return self.execute(RELATION_SHOW, model, model_id=model_id, relation=relation, relation_id=relation_id)

    def put(self, model, model_id, relation, relation_id):
        """Update a related object"""
        return self.execute(RELATION_UPDATE, model, model_id=model_id, relation=relation, relation_id=relation_id)

    def patch(self, model, model_id, relation, relation_id):
        """Update a related object"""
        return self.execute(RELATION_UPDATE, model, model_id=model_id, relation=relation, relation_id=relation_id)

    def delete(self, model, model_id, relation, relation_id):
        """Remove a related object"""
        return self.execute(RELATION_DESTROY, model, model_id=model_id, relation=relation, relation_id=relation_id)


class RelationOfRelationResource(DynApiResource):
    operations = {"get": RELATION_OF_RELATION_INDEX}

    def get(self, model, model_id, relation, relation_id, ror):
        """Retrieve the objects related to a related object"""
        return self.execute(RELATION_OF_RELATION_INDEX, model, model_id=model_id, relation=relation, relation_id=relation_id, ror=ror)


class RelationOfRelationInstanceResource(DynApiResource):
    operations = {"get": RELATION_OF_RELATION_SHOW}

    def get(self, model, model_id, relation, relation_id, ror, ror_id):
        """Retrieve an object related to a related object"""
        return self.execute(
            RELATION_OF_RELATION_SHOW, model, model_id=model_id, relation=relation, relation_id=relation_id, ror=ror, ror_id=ror_id
        )


# url rule => resource class, the rules are relative to the api prefix
ROUTES = (
    ("/<string:model>", CollectionResource),
    ("/<string:model>/export", ExportResource),
    ("/<string:model>/exec/<string:function>", FunctionResource),
    ("/<string:model>/<string:model_id>", InstanceResource),
    ("/<string:model>/<string:model_id>/exec/<string:function>", InstanceFunctionResource),
    ("/<string:model>/<string:model_id>/<string:relation>", RelationResource),
    ("/<string:model>/<string:model_id>/<string:relation>/<string:relation_id>", RelationInstanceResource),
    ("/<string:model>/<string:model_id>/<string:relation>/<string:relation_id>/<string:ror>", RelationOfRelationResource),
    (
        "/<string:model>/<string:model_id>/<string:relation>/<string:relation_id>/<string:ror>/<string:ror_id>",
        RelationOfRelationInstanceResource,
    ),
)
